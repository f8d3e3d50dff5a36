import pytest

from wlturbo.proxies import (
    BaseProxy,
    CallbackProxy,
    Compositor,
    Context,
    ContextClosedError,
    Keyboard,
    OutputHead,
    OutputMode,
    Pointer,
    Region,
    Seat,
    SeatCapability,
    Surface,
    Touch,
)
from wlturbo.wire import Event, encode_arg


class FakeDisplay:
    def __init__(self, fail=False):
        self.objects = {}
        self.listeners = {}
        self.sent = []
        self.next_id = 2
        self.closed = False
        self.roundtrips = 0
        self.dispatches = 0
        self.pending = []
        self.fail = fail

    def allocate_id(self):
        object_id = self.next_id
        self.next_id += 1
        return object_id

    def send_request(self, object_id, opcode, *args):
        if self.fail:
            raise OSError("broken pipe")
        self.sent.append((object_id, opcode, args))

    def send_request_with_fds(self, object_id, opcode, fds, *args):
        if self.fail:
            raise OSError("broken pipe")
        self.sent.append((object_id, opcode, args, list(fds)))

    def roundtrip(self):
        self.roundtrips += 1

    def dispatch(self):
        self.dispatches += 1
        if self.pending:
            self.pending.pop(0)()

    def close(self):
        self.closed = True


@pytest.fixture
def display():
    return FakeDisplay()


@pytest.fixture
def ctx(display):
    return Context(display)


def test_register_and_unregister(ctx, display):
    proxy = BaseProxy(context=ctx, id=7)
    ctx.register(proxy)
    assert ctx.proxies[7] is proxy
    assert display.objects[7] is proxy
    ctx.unregister(proxy)
    assert 7 not in ctx.proxies
    assert 7 not in display.objects


def test_register_ignores_zero_id(ctx, display):
    ctx.register(BaseProxy(context=ctx))
    assert ctx.proxies == {}
    assert display.objects == {}


def test_unregister_id(display):
    ctx = Context(display)
    proxy = BaseProxy(context=ctx, id=9)
    ctx.register(proxy)
    assert ctx.proxies == {9: proxy}
    ctx.unregister_id(9)
    assert ctx.proxies == {}
    assert proxy.id not in display.objects


def test_allocate_id_delegates(ctx):
    assert [ctx.allocate_id(), ctx.allocate_id()] == [2, 3]


def test_send_request_uses_proxy_id(ctx, display):
    proxy = BaseProxy(context=ctx, id=5)
    ctx.send_request(proxy, 3, 1, "x")
    assert proxy.id == 5
    assert display.sent == [(proxy.id, 3, (1, "x"))]


def test_send_request_with_fds(ctx, display):
    proxy = BaseProxy(context=ctx, id=5)
    ctx.send_request_with_fds(proxy, 1, [10], 42)
    assert proxy.id == 5
    assert display.sent == [(proxy.id, 1, (42,), [10])]


def test_close_blocks_requests(ctx, display):
    ctx.close()
    assert display.closed
    assert ctx.closed
    with pytest.raises(ContextClosedError):
        ctx.send_request(BaseProxy(context=ctx, id=5), 0)
    with pytest.raises(ContextClosedError):
        ctx.run_till(BaseProxy(context=ctx, id=5))


def test_run_till_callback_does_roundtrip(ctx, display):
    callback = CallbackProxy(context=ctx, id=4)
    ctx.run_till(callback)
    assert callback.id not in ctx.proxies
    assert (display.roundtrips, display.dispatches) == (1, 0)


def test_run_till_waits_for_unregister(ctx, display):
    proxy = BaseProxy(context=ctx, id=6)
    ctx.register(proxy)
    assert ctx.proxies[proxy.id] is proxy
    display.pending = [lambda: None, lambda: ctx.unregister(proxy)]
    ctx.run_till(proxy)
    assert proxy.id not in ctx.proxies
    assert display.dispatches == 2


def test_callback_fires_listeners(ctx, display):
    received = []
    callback = CallbackProxy(context=ctx, id=4)
    display.listeners[callback.id] = {0: [received.append]}
    results = [
        callback.dispatch(Event(4, 0, b"\x01\x00\x00\x00")),
        callback.dispatch(Event(4, 1, b"ignored")),
    ]
    assert results == [None, None]
    assert received == [b"\x01\x00\x00\x00"]


def test_seat_creates_devices(ctx, display):
    seat = Seat(context=ctx, id=3)
    pointer = seat.get_pointer()
    keyboard = seat.get_keyboard()
    touch = seat.get_touch()
    assert isinstance(pointer, Pointer) and isinstance(keyboard, Keyboard)
    assert isinstance(touch, Touch)
    assert display.sent == [
        (3, 0, (pointer.id,)),
        (3, 1, (keyboard.id,)),
        (3, 2, (touch.id,)),
    ]
    assert ctx.proxies[pointer.id] is pointer


def test_seat_failed_request_unregisters(display):
    display.fail = True
    ctx = Context(display)
    seat = Seat(context=ctx, id=3)
    with pytest.raises(OSError):
        seat.get_pointer()
    assert ctx.proxies == {}
    assert display.objects == {}


def test_seat_release(ctx, display):
    seat = Seat(context=ctx, id=3)
    ctx.register(seat)
    seat.release()
    assert display.sent == [(3, 3, ())]
    assert 3 not in ctx.proxies


def test_seat_events(ctx):
    seat = Seat(context=ctx, id=3)
    caps = SeatCapability.POINTER | SeatCapability.KEYBOARD
    seat.dispatch(Event(3, 0, encode_arg(int(caps))))
    seat.dispatch(Event(3, 1, encode_arg("seat0")))
    assert seat.capabilities == caps
    assert seat.capabilities & SeatCapability.TOUCH == 0
    assert seat.name == "seat0"


def test_seat_all_capabilities_from_wire(ctx):
    seat = Seat(context=ctx, id=3)
    seat.dispatch(Event(3, 0, encode_arg(7)))
    assert seat.capabilities == 7
    assert seat.capabilities == (
        SeatCapability.POINTER | SeatCapability.KEYBOARD | SeatCapability.TOUCH
    )


def test_compositor_creates_surface_and_region(ctx, display):
    compositor = Compositor(context=ctx, id=3)
    surface = compositor.create_surface()
    region = compositor.create_region()
    assert isinstance(surface, Surface) and isinstance(region, Region)
    assert display.sent == [(3, 0, (surface.id,)), (3, 1, (region.id,))]
    assert display.objects[surface.id] is surface


def test_surface_requests(ctx, display):
    surface = Surface(context=ctx, id=8)
    region = Region(context=ctx, id=9)
    surface.attach(None, 0, 0)
    surface.damage(1, 2, 3, 4)
    surface.set_opaque_region(region)
    surface.set_input_region(None)
    surface.commit()
    surface.set_buffer_transform(1)
    surface.set_buffer_scale(2)
    surface.damage_buffer(5, 6, 7, 8)
    surface.offset(-1, 1)
    assert [(oid, op) for oid, op, _ in display.sent] == [
        (8, op) for op in (1, 2, 4, 5, 6, 7, 8, 9, 10)
    ]
    assert display.sent[1][2] == (1, 2, 3, 4)
    assert display.sent[2][2] == (region,)
    offset_args = display.sent[-1][2]
    assert encode_arg(offset_args[0]) == b"\xff\xff\xff\xff"


def test_surface_frame_and_destroy(ctx, display):
    surface = Surface(context=ctx, id=8)
    ctx.register(surface)
    callback = surface.frame()
    assert isinstance(callback, CallbackProxy)
    assert display.sent[0] == (8, 3, (callback.id,))
    assert ctx.proxies[callback.id] is callback
    surface.destroy()
    assert display.sent[-1] == (8, 0, ())
    assert 8 not in ctx.proxies


def test_region_requests(ctx, display):
    region = Region(context=ctx, id=9)
    ctx.register(region)
    assert ctx.proxies[region.id] is region
    region.add(0, 0, 10, 10)
    region.subtract(1, 1, 2, 2)
    region.destroy()
    assert display.sent == [
        (region.id, 0, (0, 0, 10, 10)),
        (region.id, 1, (1, 1, 2, 2)),
        (region.id, 2, ()),
    ]
    assert region.id not in ctx.proxies
    assert region.id not in display.objects


def test_output_head_events(ctx, display):
    head = OutputHead(context=ctx, id=20)
    ctx.register(head)
    head.dispatch(Event(20, 0, encode_arg("DP-1")))
    head.dispatch(Event(20, 1, encode_arg("Panel")))
    head.dispatch(Event(20, 2, encode_arg(600) + encode_arg(340)))
    head.dispatch(Event(20, 3, encode_arg(21)))
    assert (head.name, head.description) == ("DP-1", "Panel")
    assert (head.width, head.height) == (600, 340)
    mode = display.objects[21]
    assert isinstance(mode, OutputMode) and mode.context is ctx
    assert head.modes == [mode]
    head.dispatch(Event(20, 9))
    assert 20 not in display.objects


def test_output_mode_events(ctx, display):
    mode = OutputMode(context=ctx, id=21)
    ctx.register(mode)
    mode.dispatch(Event(21, 0, encode_arg(1920) + encode_arg(1080)))
    mode.dispatch(Event(21, 1, encode_arg(60000)))
    mode.dispatch(Event(21, 2))
    assert (mode.width, mode.height, mode.refresh) == (1920, 1080, 60000)
    assert mode.preferred
    mode.dispatch(Event(21, 3))
    assert 21 not in ctx.proxies


def test_proxy_without_context_raises():
    with pytest.raises(RuntimeError):
        Surface(id=4).commit()