# wlturbo

A Wayland client library written in plain Python. It speaks the Wayland wire
protocol over the compositor's Unix socket, passes file descriptors with
`SCM_RIGHTS`, and gives you proxies for the core protocol objects.

Anything that talks to the socket needs Linux and a running Wayland
compositor. The wire encoding in `wlturbo.wire` and the shared-memory helpers
in `wlturbo.shm` and `wlturbo.fdpass` work on their own.

## Installing

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Modules

- `wlturbo.client`: `connect`, `Display`, `Registry`, `Global`,
  `RegistryGlobalEvent`, `RegistryGlobalRemoveEvent`, `ProtocolError`.
- `wlturbo.proxies`: `Context`, `BaseProxy`, `CallbackProxy`, `Compositor`,
  `Surface`, `Region`, `Seat`, `SeatCapability`, `Pointer`, `Keyboard`,
  `Touch`, `Output`, `OutputHead`, `OutputMode`, `ContextClosedError`.
- `wlturbo.wire`: `Fixed`, `Int32`, `Fd`, `Event`, `encode_arg`,
  `encode_header`, `decode_header`, `encode_message`.
- `wlturbo.fdpass`: `FdQueue`, `get_next_fd`, `recv_with_fds`,
  `send_with_fds`, `create_anonymous_file`, `map_memory`, `unmap_memory`.
- `wlturbo.shm`: `PixelFormat`, `ShmPool`, `ShmBuffer`, `create_shm_pool`.

## Connecting and listing globals

```python
from wlturbo.client import connect

with connect() as display:       # uses $WAYLAND_DISPLAY under $XDG_RUNTIME_DIR
    display.roundtrip()          # lets the registry collect the announced globals
    for global_ in display.registry.get_globals().values():
        print(global_.name, global_.interface, global_.version)
```

`connect` uses the path it is given, or `WAYLAND_DISPLAY`, or `wayland-0`, and
resolves relative names under `XDG_RUNTIME_DIR`. It raises `RuntimeError` when
that variable is not set and `ConnectionError` when the socket cannot be
reached. A `wl_display.error` event from the compositor is raised from
`Display.dispatch()` as `ProtocolError` and kept in `Display.last_error`.
`Display.roundtrip()` gives up with `RuntimeError` after 1000 events without
the sync callback firing.

## Reacting to globals and binding

```python
from wlturbo.client import connect
from wlturbo.proxies import Compositor

display = connect()
compositor = Compositor(display.context)

def on_compositor(registry, name, version):
    registry.bind(name, "wl_compositor", min(version, 4), compositor)

display.registry.add_handler("wl_compositor", on_compositor)
display.roundtrip()

surface = compositor.create_surface()
surface.commit()
```

A handler registered for `"*"` is called for every global.
`Registry.add_global_handler` and `Registry.add_global_remove_handler` take a
callable (or an object with `handle_registry_global` /
`handle_registry_global_remove`) that receives a `RegistryGlobalEvent` or
`RegistryGlobalRemoveEvent`. `Registry.find_global` and
`Registry.find_global_by_name` return the matching `Global` or `None`.

Requests sent through a `Context` after `Context.close()` raise
`ContextClosedError`.

## Events

`Display.dispatch()` reads and handles one event. Events for an object that
has a proxy go to that proxy's `dispatch` method. For other objects, handlers
can be attached in two ways:

```python
display.add_listener(object_id, opcode, lambda body: ...)              # raw bytes
display.register_event_handler(object_id, opcode, lambda event: ...)   # Event
```

An `Event` reads its arguments in order with `uint32()`, `int32()`, `fixed()`,
`string()`, `array()`, `fd()`, `new_id()` and `proxy()`. Reads past the end
return empty values rather than raising. `fd()` takes the next descriptor
received on the socket (see `fdpass.get_next_fd`).

Events on the object whose id is `Display.output_manager_id` (5 by default,
`None` to turn it off) are treated as `zwlr_output_manager_v1` events: a
`head` event creates an `OutputHead`, whose `mode` events create `OutputMode`
objects.

## Wire format helpers

```python
from wlturbo.wire import Fixed, Int32, encode_message, decode_header

message = encode_message(3, 0, [7, "wl_seat", Int32(-1), Fixed.from_float(1.5)])
object_id, size, opcode = decode_header(message[:8])
```

Plain non-negative integers are encoded as unsigned 32-bit values, `Int32`
and negative integers as signed, `Fixed` as 24.8 fixed point, `str` as a
null-terminated padded string, `bytes` as a padded array, `None` as a null
object, `Fd` as a placeholder word (or nothing, with `in_body=False`), and
proxies by their object id. Messages larger than 65535 bytes raise
`ValueError`.

## Shared memory

```python
from wlturbo.shm import PixelFormat, create_shm_pool

with create_shm_pool(4 * 640 * 480) as pool:
    buffer = pool.allocate_buffer(640, 480, 4 * 640, PixelFormat.ARGB8888)
    with buffer.data() as pixels:
        pixels[:] = b"\xff" * len(pixels)
```

The pool is backed by a sealed memfd where available, otherwise by an
unnamed file in `/dev/shm`. Buffers are placed one after another in the pool,
each starting on a 64-byte boundary; asking for more than the pool has left
raises `ValueError`.

## What it does not do

- Only the core objects listed above have proxies. `Pointer`, `Keyboard`,
  `Touch` and `Output` do not decode their events; use `add_listener` or
  `register_event_handler` for those, or subclass `BaseProxy`.
- There is no generator for protocol bindings from XML descriptions.
- There is no event loop with timeouts or polling: `Display.dispatch()`
  blocks until one event has arrived.
- There is no command-line tool; it is a library only.