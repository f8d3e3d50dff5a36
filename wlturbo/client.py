"""Connection to a Wayland compositor: the display, its registry and the event loop."""

from __future__ import annotations

import logging
import os
import socket
import struct
import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any

from wlturbo.fdpass import recv_with_fds, send_with_fds
from wlturbo.proxies import BaseProxy, CallbackProxy, Context, OutputHead
from wlturbo.wire import HEADER_SIZE, Event, decode_header, encode_message

_log = logging.getLogger(__name__)

DISPLAY_ID = 1
MAX_ROUNDTRIP_DISPATCHES = 1000
DEFAULT_OUTPUT_MANAGER_ID = 5

_UINT32 = struct.Struct("<I")

GlobalHandler = Callable[["Registry", int, int], None]
EventHandler = Callable[[Event], None]
Listener = Callable[[bytes], None]


class ProtocolError(Exception):
    """A fatal error reported by the compositor on the display object."""

    def __init__(self, object_id: int, code: int, message: str) -> None:
        super().__init__(f"protocol error: object {object_id}, code {code}: {message}")
        self.object_id = object_id
        self.code = code
        self.message = message


@dataclass(frozen=True)
class Global:
    """A global object announced by the compositor."""

    name: int
    interface: str
    version: int


@dataclass(frozen=True)
class RegistryGlobalEvent:
    """Announcement of a global, as passed to global handlers."""

    registry: Registry
    name: int
    interface: str
    version: int


@dataclass(frozen=True)
class RegistryGlobalRemoveEvent:
    """Removal of a global, as passed to global-remove handlers."""

    registry: Registry
    name: int


class Registry:
    """The wl_registry: keeps track of announced globals and binds to them."""

    def __init__(self, display: Display | None, registry_id: int) -> None:
        self.display = display
        self.id = registry_id
        self._globals: dict[int, Global] = {}
        self._handlers: dict[str, GlobalHandler] = {}
        self._remove_handlers: list[Callable[[RegistryGlobalRemoveEvent], None]] = []
        self._lock = threading.Lock()

    def add_handler(self, interface: str, handler: GlobalHandler) -> None:
        """Call ``handler(registry, name, version)`` when ``interface`` is announced.

        The interface ``"*"`` matches every announcement.
        """
        with self._lock:
            self._handlers[interface] = handler

    def add_global_handler(self, handler: Any) -> None:
        """Receive a :class:`RegistryGlobalEvent` for every announced global.

        ``handler`` is a callable or an object with ``handle_registry_global``.
        """
        target = getattr(handler, "handle_registry_global", handler)

        def on_global(registry: Registry, name: int, version: int) -> None:
            found = self.find_global_by_name(name)
            if found is not None:
                target(RegistryGlobalEvent(self, name, found.interface, version))

        self.add_handler("*", on_global)

    def add_global_remove_handler(self, handler: Any) -> None:
        """Receive a :class:`RegistryGlobalRemoveEvent` whenever a global goes away.

        ``handler`` is a callable or an object with ``handle_registry_global_remove``.
        """
        target = getattr(handler, "handle_registry_global_remove", handler)
        with self._lock:
            self._remove_handlers.append(target)

    def handle_global(self, data: bytes) -> None:
        """Record a global from the body of a ``global`` event; malformed bodies are ignored."""
        if len(data) < 8:
            return
        name, length = struct.unpack_from("<II", data)
        if length == 0 or len(data) < 8 + length + 4:
            return
        interface = bytes(data[8 : 8 + length - 1]).decode("utf-8", errors="replace")
        version_offset = 8 + length + (4 - length % 4) % 4
        if len(data) < version_offset + 4:
            return
        (version,) = _UINT32.unpack_from(data, version_offset)
        with self._lock:
            self._globals[name] = Global(name, interface, version)
            specific = self._handlers.get(interface)
            wildcard = self._handlers.get("*")
        if specific is not None:
            specific(self, name, version)
        if wildcard is not None:
            wildcard(self, name, version)

    def handle_global_remove(self, data: bytes) -> None:
        """Forget a global named in the body of a ``global_remove`` event."""
        if len(data) < 4:
            return
        (name,) = _UINT32.unpack_from(data)
        with self._lock:
            self._globals.pop(name, None)
            handlers = list(self._remove_handlers)
        for handler in handlers:
            handler(RegistryGlobalRemoveEvent(self, name))

    def _require_display(self) -> Display:
        if self.display is None:
            raise RuntimeError("registry is not attached to a display")
        return self.display

    def bind(self, name: int, interface: str, version: int, proxy: BaseProxy) -> None:
        """Bind global ``name`` to ``proxy``, giving it an id and context if it lacks them."""
        display = self._require_display()
        if proxy.id == 0:
            proxy.id = display.allocate_id()
            _log.debug("allocated id %d for %s", proxy.id, interface)
        if proxy.context is None:
            proxy.context = display.context
        proxy.context.register(proxy)
        display.objects[proxy.id] = proxy
        try:
            display.send_request(self.id, 0, name, interface, version, proxy.id)
        except BaseException:
            proxy.context.unregister(proxy)
            raise

    def bind_id(self, name: int, interface: str, version: int) -> int:
        """Bind global ``name`` to a fresh id and return that id."""
        display = self._require_display()
        new_id = display.allocate_id()
        display.send_request(self.id, 0, name, interface, version, new_id)
        return new_id

    def get_globals(self) -> dict[int, Global]:
        """Return a copy of all globals currently announced, keyed by name."""
        with self._lock:
            return dict(self._globals)

    def find_global(self, interface: str) -> Global | None:
        """Return a global offering ``interface``, or None."""
        with self._lock:
            return next((g for g in self._globals.values() if g.interface == interface), None)

    def find_global_by_name(self, name: int) -> Global | None:
        """Return the global with numeric ``name``, or None."""
        with self._lock:
            return self._globals.get(name)


class Display:
    """A client connection to the compositor over a connected Unix socket.

    Creating it registers the display object, creates the registry and sends
    the ``get_registry`` request. Events on object ``output_manager_id`` are
    treated as output-manager events that may create head objects.
    """

    id = DISPLAY_ID

    def __init__(self, sock: socket.socket) -> None:
        self._sock = sock
        self._next_id = 2
        self._id_lock = threading.Lock()
        self._send_lock = threading.Lock()
        self._recv_lock = threading.Lock()
        self.objects: dict[int, Any] = {DISPLAY_ID: self}
        self.listeners: dict[int, dict[int, list[Listener]]] = {}
        self._event_handlers: dict[tuple[int, int], EventHandler] = {}
        self.output_manager_id: int | None = DEFAULT_OUTPUT_MANAGER_ID
        self.last_error: ProtocolError | None = None
        self.context = Context(self)
        self.registry = Registry(self, self.allocate_id())
        self.objects[self.registry.id] = self.registry
        self.add_listener(self.registry.id, 0, self.registry.handle_global)
        self.add_listener(self.registry.id, 1, self.registry.handle_global_remove)
        self.send_request(DISPLAY_ID, 1, self.registry.id)

    def __enter__(self) -> Display:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        """Close the connection."""
        self._sock.close()

    def allocate_id(self) -> int:
        """Return the next unused client object id."""
        with self._id_lock:
            object_id = self._next_id
            self._next_id += 1
        return object_id

    def register_event_handler(self, object_id: int, opcode: int, handler: EventHandler) -> None:
        """Call ``handler(event)`` for events on an object that has no proxy; replaces any earlier one."""
        self._event_handlers[(object_id, opcode)] = handler

    def send_request(self, object_id: int, opcode: int, *args: Any) -> None:
        """Send a request to the compositor."""
        self.send_request_with_fds(object_id, opcode, None, *args)

    def send_request_with_fds(
        self, object_id: int, opcode: int, fds: Iterable[int] | None, *args: Any
    ) -> None:
        """Send a request with file descriptors attached out of band."""
        message = encode_message(object_id, opcode, args)
        with self._send_lock:
            send_with_fds(self._sock, message, fds)

    def _recv_exact(self, size: int, what: str) -> bytes:
        chunks: list[bytes] = []
        received = 0
        while received < size:
            data, _fds = recv_with_fds(self._sock, size - received)
            if not data:
                raise ConnectionError(f"incomplete {what}: got {received} bytes")
            chunks.append(data)
            received += len(data)
        return b"".join(chunks)

    def dispatch(self) -> None:
        """Read one event and deliver it.

        Raises :class:`ProtocolError` when the compositor reports an error.
        """
        with self._recv_lock:
            header = decode_header(self._recv_exact(HEADER_SIZE, "header"))
            body = b""
            if header.size > HEADER_SIZE:
                body = self._recv_exact(header.size - HEADER_SIZE, "body")

        if header.object_id == DISPLAY_ID:
            self._handle_display_event(header.opcode, body)
            return

        target = self.objects.get(header.object_id)
        if target is None:
            _log.debug("no object for id %d", header.object_id)
        else:
            self._handle_server_object(header.object_id, header.opcode, body)
            if isinstance(target, BaseProxy):
                target.dispatch(Event(header.object_id, header.opcode, body))
                return

        handler = self._event_handlers.get((header.object_id, header.opcode))
        if handler is not None:
            handler(Event(header.object_id, header.opcode, body))

        for listener in list(self.listeners.get(header.object_id, {}).get(header.opcode, ())):
            listener(body)

    def _handle_display_event(self, opcode: int, data: bytes) -> None:
        if opcode == 0:
            if len(data) < 8:
                raise ValueError("invalid error event")
            object_id, code = struct.unpack_from("<II", data)
            message = ""
            if len(data) >= 12:
                (length,) = _UINT32.unpack_from(data, 8)
                if length > 0 and len(data) >= 12 + length:
                    message = bytes(data[12 : 12 + length - 1]).decode("utf-8", errors="replace")
            self.last_error = ProtocolError(object_id, code, message)
            raise self.last_error
        if opcode == 1:
            if len(data) < 4:
                raise ValueError("invalid delete_id event")
            (object_id,) = _UINT32.unpack_from(data)
            self.objects.pop(object_id, None)

    def _handle_server_object(self, object_id: int, opcode: int, body: bytes) -> bool:
        target = self.objects.get(object_id)
        if target is None or isinstance(target, Registry):
            return False
        if object_id != self.output_manager_id or opcode != 0:
            return False
        if len(body) < 4:
            _log.debug("head event body too short: %d bytes", len(body))
            return False
        (head_id,) = _UINT32.unpack_from(body)
        self.objects[head_id] = OutputHead(context=self.context, id=head_id)
        return True

    def roundtrip(self) -> None:
        """Block until the compositor has processed every request sent so far."""
        callback_id = self.allocate_id()
        done = threading.Event()

        def on_done(_data: bytes) -> None:
            self.objects.pop(callback_id, None)
            self.listeners.pop(callback_id, None)
            done.set()

        self.add_listener(callback_id, 0, on_done)
        self.send_request(DISPLAY_ID, 0, callback_id)
        self.objects[callback_id] = CallbackProxy(context=self.context, id=callback_id)

        for _ in range(MAX_ROUNDTRIP_DISPATCHES):
            self.dispatch()
            if done.is_set():
                return
        raise RuntimeError("roundtrip failed: max iterations reached")

    def add_listener(self, object_id: int, opcode: int, handler: Listener) -> None:
        """Call ``handler(body)`` for every event ``opcode`` on ``object_id``."""
        self.listeners.setdefault(object_id, {}).setdefault(opcode, []).append(handler)

    def sync(self) -> CallbackProxy:
        """Send a sync request and return the callback that completes it."""
        callback = CallbackProxy(context=self.context, id=self.allocate_id())
        self.send_request(DISPLAY_ID, 0, callback.id)
        self.objects[callback.id] = callback
        return callback


def connect(socket_path: str | None = None) -> Display:
    """Connect to the compositor socket and return a :class:`Display`.

    Without a path, ``$WAYLAND_DISPLAY`` or ``wayland-0`` is used; relative
    paths are resolved against ``$XDG_RUNTIME_DIR``.
    """
    if not socket_path:
        socket_path = os.environ.get("WAYLAND_DISPLAY") or "wayland-0"
    if not os.path.isabs(socket_path):
        runtime_dir = os.environ.get("XDG_RUNTIME_DIR")
        if not runtime_dir:
            raise RuntimeError("XDG_RUNTIME_DIR not set")
        socket_path = os.path.join(runtime_dir, socket_path)

    sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    try:
        sock.connect(socket_path)
    except OSError as exc:
        sock.close()
        raise ConnectionError(f"failed to connect to Wayland: {exc}") from exc
    try:
        return Display(sock)
    except BaseException:
        sock.close()
        raise