"""Wayland client: wire protocol, display and registry, object proxies, fd passing and shared memory."""

__version__ = "0.1.0"