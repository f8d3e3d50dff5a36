"""Client-side protocol objects and the context that tracks them."""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import IntFlag
from typing import Any

from wlturbo.wire import Event, Int32

_log = logging.getLogger(__name__)


class ContextClosedError(RuntimeError):
    """Raised when a request is made through a closed context."""

    def __init__(self) -> None:
        super().__init__("context is closed")


class Context:
    """Tracks the live proxies of one display connection.

    The display must provide ``objects`` (a dict of object id to object),
    ``listeners`` (object id to opcode to list of handlers taking the raw
    event body), and the methods ``allocate_id``, ``send_request``,
    ``send_request_with_fds``, ``dispatch``, ``roundtrip`` and ``close``.
    """

    def __init__(self, display: Any) -> None:
        self.display = display
        self.proxies: dict[int, BaseProxy] = {}
        self._closed = False
        self._lock = threading.Lock()

    @property
    def closed(self) -> bool:
        return self._closed

    def _check_open(self) -> None:
        if self._closed:
            raise ContextClosedError()

    def send_request(self, proxy: BaseProxy, opcode: int, *args: Any) -> None:
        """Send a request on behalf of ``proxy``."""
        self._check_open()
        self.display.send_request(proxy.id, opcode, *args)

    def send_request_with_fds(
        self, proxy: BaseProxy, opcode: int, fds: Iterable[int] | None, *args: Any
    ) -> None:
        """Send a request on behalf of ``proxy`` with descriptors attached."""
        self._check_open()
        self.display.send_request_with_fds(proxy.id, opcode, fds, *args)

    def register(self, proxy: BaseProxy | None) -> None:
        """Track ``proxy`` here and in the display's object table."""
        if proxy is None or proxy.id == 0:
            return
        with self._lock:
            self.proxies[proxy.id] = proxy
        self.display.objects[proxy.id] = proxy

    def unregister(self, proxy: BaseProxy | None) -> None:
        """Stop tracking ``proxy``."""
        if proxy is not None:
            self.unregister_id(proxy.id)

    def unregister_id(self, object_id: int) -> None:
        """Stop tracking the object with ``object_id``."""
        with self._lock:
            self.proxies.pop(object_id, None)
        self.display.objects.pop(object_id, None)

    def allocate_id(self) -> int:
        """Allocate a fresh object id from the display."""
        return self.display.allocate_id()

    def close(self) -> None:
        """Mark the context closed and close the display."""
        self._closed = True
        self.display.close()

    def run_till(self, callback: BaseProxy) -> None:
        """Dispatch events until ``callback`` is done.

        A sync callback is completed with a roundtrip; any other object is
        waited on until it unregisters itself.
        """
        self._check_open()
        if isinstance(callback, CallbackProxy):
            self.display.roundtrip()
            return
        while True:
            self.display.dispatch()
            with self._lock:
                if callback.id not in self.proxies:
                    return


@dataclass(eq=False)
class BaseProxy:
    """A protocol object identified by its id within a context."""

    context: Context | None = None
    id: int = 0

    def _ctx(self) -> Context:
        if self.context is None:
            raise RuntimeError(f"object {self.id} has no context")
        return self.context

    def _create(self, cls: type[BaseProxy], opcode: int) -> Any:
        ctx = self._ctx()
        child = cls(context=ctx, id=ctx.allocate_id())
        ctx.register(child)
        try:
            ctx.send_request(self, opcode, child.id)
        except BaseException:
            ctx.unregister(child)
            raise
        return child

    def _destroy(self, opcode: int) -> None:
        ctx = self._ctx()
        ctx.send_request(self, opcode)
        ctx.unregister(self)

    def dispatch(self, event: Event) -> None:
        """Handle an event; the base object ignores all events."""


@dataclass(eq=False)
class CallbackProxy(BaseProxy):
    """A wl_callback: its done event fires the listeners added for it."""

    def dispatch(self, event: Event) -> None:
        if event.opcode != 0:
            return
        display = self._ctx().display
        handlers = display.listeners.get(self.id, {}).get(0)
        if not handlers:
            _log.debug("no listeners for callback %d", self.id)
            return
        for handler in list(handlers):
            if handler is not None:
                handler(event.data)


class SeatCapability(IntFlag):
    """Input devices a seat offers."""

    POINTER = 1
    KEYBOARD = 2
    TOUCH = 4


@dataclass(eq=False)
class Pointer(BaseProxy):
    """A wl_pointer."""


@dataclass(eq=False)
class Keyboard(BaseProxy):
    """A wl_keyboard."""


@dataclass(eq=False)
class Touch(BaseProxy):
    """A wl_touch."""


@dataclass(eq=False)
class Output(BaseProxy):
    """A wl_output."""


@dataclass(eq=False)
class Seat(BaseProxy):
    """A wl_seat."""

    capabilities: int = 0
    name: str = ""

    def get_pointer(self) -> Pointer:
        return self._create(Pointer, 0)

    def get_keyboard(self) -> Keyboard:
        return self._create(Keyboard, 1)

    def get_touch(self) -> Touch:
        return self._create(Touch, 2)

    def release(self) -> None:
        self._destroy(3)

    def dispatch(self, event: Event) -> None:
        if event.opcode == 0:
            self.capabilities = event.uint32()
        elif event.opcode == 1:
            self.name = event.string()


@dataclass(eq=False)
class Region(BaseProxy):
    """A wl_region."""

    def add(self, x: int, y: int, width: int, height: int) -> None:
        self._ctx().send_request(self, 0, Int32(x), Int32(y), Int32(width), Int32(height))

    def subtract(self, x: int, y: int, width: int, height: int) -> None:
        self._ctx().send_request(self, 1, Int32(x), Int32(y), Int32(width), Int32(height))

    def destroy(self) -> None:
        self._destroy(2)


@dataclass(eq=False)
class Surface(BaseProxy):
    """A wl_surface."""

    def destroy(self) -> None:
        self._destroy(0)

    def attach(self, buffer: Any, x: int, y: int) -> None:
        self._ctx().send_request(self, 1, buffer, Int32(x), Int32(y))

    def damage(self, x: int, y: int, width: int, height: int) -> None:
        self._ctx().send_request(self, 2, Int32(x), Int32(y), Int32(width), Int32(height))

    def frame(self) -> CallbackProxy:
        """Request a frame callback."""
        return self._create(CallbackProxy, 3)

    def set_opaque_region(self, region: Region | None) -> None:
        self._ctx().send_request(self, 4, region)

    def set_input_region(self, region: Region | None) -> None:
        self._ctx().send_request(self, 5, region)

    def commit(self) -> None:
        self._ctx().send_request(self, 6)

    def set_buffer_transform(self, transform: int) -> None:
        self._ctx().send_request(self, 7, Int32(transform))

    def set_buffer_scale(self, scale: int) -> None:
        self._ctx().send_request(self, 8, Int32(scale))

    def damage_buffer(self, x: int, y: int, width: int, height: int) -> None:
        self._ctx().send_request(self, 9, Int32(x), Int32(y), Int32(width), Int32(height))

    def offset(self, x: int, y: int) -> None:
        self._ctx().send_request(self, 10, Int32(x), Int32(y))

    def dispatch(self, event: Event) -> None:
        """Surface events (enter, leave, preferred scale) are ignored."""


@dataclass(eq=False)
class Compositor(BaseProxy):
    """A wl_compositor."""

    def create_surface(self) -> Surface:
        return self._create(Surface, 0)

    def create_region(self) -> Region:
        return self._create(Region, 1)


@dataclass(eq=False)
class OutputMode(BaseProxy):
    """A zwlr_output_mode_v1."""

    width: int = 0
    height: int = 0
    refresh: int = 0
    preferred: bool = False

    def dispatch(self, event: Event) -> None:
        if event.opcode == 0:
            self.width = event.int32()
            self.height = event.int32()
        elif event.opcode == 1:
            self.refresh = event.int32()
        elif event.opcode == 2:
            self.preferred = True
        elif event.opcode == 3:
            self._ctx().unregister(self)
        else:
            _log.debug("mode %d: unhandled opcode %d", self.id, event.opcode)


@dataclass(eq=False)
class OutputHead(BaseProxy):
    """A zwlr_output_head_v1."""

    name: str = ""
    description: str = ""
    width: int = 0
    height: int = 0
    modes: list[OutputMode] = field(default_factory=list)

    def dispatch(self, event: Event) -> None:
        if event.opcode == 0:
            self.name = event.string()
        elif event.opcode == 1:
            self.description = event.string()
        elif event.opcode == 2:
            self.width = event.int32()
            self.height = event.int32()
        elif event.opcode == 3:
            ctx = self._ctx()
            mode = OutputMode(context=ctx, id=event.uint32())
            ctx.display.objects[mode.id] = mode
            self.modes.append(mode)
        elif event.opcode == 9:
            self._ctx().unregister(self)
        else:
            _log.debug("head %d: unhandled opcode %d", self.id, event.opcode)