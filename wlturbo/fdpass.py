"""File-descriptor passing over Unix sockets and shared-memory helpers."""

from __future__ import annotations

import array
import fcntl
import mmap
import os
import socket
import threading
from collections import deque
from collections.abc import Iterable

QUEUE_CAPACITY = 256
MAX_FDS_PER_MESSAGE = 4

_FD_ITEMSIZE = array.array("i").itemsize


class FdQueue:
    """Thread-safe FIFO of file descriptors received out of band."""

    def __init__(self, capacity: int = QUEUE_CAPACITY) -> None:
        self._capacity = capacity
        self._items: deque[int] = deque()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def put(self, fd: int) -> None:
        """Append a descriptor; raises OverflowError when the queue is full."""
        with self._lock:
            if len(self._items) >= self._capacity:
                raise OverflowError(f"fd queue is full ({self._capacity} descriptors)")
            self._items.append(fd)

    def get(self) -> int | None:
        """Remove and return the oldest descriptor, or None when empty."""
        with self._lock:
            if not self._items:
                return None
            return self._items.popleft()


_received_fds = FdQueue()


def get_next_fd() -> int | None:
    """Return the next descriptor received on any socket, or None."""
    return _received_fds.get()


def recv_with_fds(sock: socket.socket, size: int) -> tuple[bytes, list[int]]:
    """Receive up to ``size`` bytes and any descriptors sent with them.

    Received descriptors are also queued for :func:`get_next_fd`.
    """
    data, ancdata, _flags, _addr = sock.recvmsg(
        size, socket.CMSG_SPACE(MAX_FDS_PER_MESSAGE * _FD_ITEMSIZE)
    )
    fds: list[int] = []
    for level, kind, payload in ancdata:
        if level != socket.SOL_SOCKET or kind != socket.SCM_RIGHTS:
            continue
        received = array.array("i")
        received.frombytes(payload[: len(payload) - len(payload) % _FD_ITEMSIZE])
        for fd in received:
            _received_fds.put(fd)
        fds.extend(received)
    return data, fds


def send_with_fds(sock: socket.socket, data: bytes, fds: Iterable[int] | None) -> None:
    """Send ``data``, attaching ``fds`` as SCM_RIGHTS when there are any."""
    fd_list = list(fds or ())
    if not fd_list:
        sock.sendall(data)
        return
    rights = array.array("i", fd_list)
    sock.sendmsg([data], [(socket.SOL_SOCKET, socket.SCM_RIGHTS, rights.tobytes())])


def _sized(fd: int, size: int) -> int:
    try:
        os.ftruncate(fd, size)
    except OSError:
        os.close(fd)
        raise
    return fd


def _memfd(size: int) -> int | None:
    if not hasattr(os, "memfd_create"):
        return None
    try:
        fd = os.memfd_create("wlclient-shm", os.MFD_CLOEXEC | os.MFD_ALLOW_SEALING)
    except OSError:
        return None
    _sized(fd, size)
    try:
        fcntl.fcntl(
            fd,
            fcntl.F_ADD_SEALS,
            fcntl.F_SEAL_SHRINK | fcntl.F_SEAL_GROW | fcntl.F_SEAL_SEAL,
        )
    except OSError:
        os.close(fd)
        raise
    return fd


def _tmpfile(size: int) -> int | None:
    if not hasattr(os, "O_TMPFILE"):
        return None
    try:
        fd = os.open("/dev/shm", os.O_TMPFILE | os.O_RDWR | os.O_CLOEXEC, 0o600)
    except OSError:
        return None
    return _sized(fd, size)


def create_anonymous_file(size: int) -> int:
    """Create an unnamed file of ``size`` bytes for shared memory and return its fd.

    A sealed memfd is preferred; an O_TMPFILE in /dev/shm and then an
    unlinked named file there are the fallbacks.
    """
    fd = _memfd(size)
    if fd is not None:
        return fd
    fd = _tmpfile(size)
    if fd is not None:
        return fd
    name = f"/dev/shm/wlclient-{os.getpid()}"
    fd = os.open(name, os.O_RDWR | os.O_CREAT | os.O_EXCL | os.O_CLOEXEC, 0o600)
    try:
        os.unlink(name)
    except OSError:
        pass
    return _sized(fd, size)


def map_memory(fd: int, size: int) -> mmap.mmap:
    """Map ``size`` bytes of ``fd`` shared and read-write."""
    return mmap.mmap(fd, size, flags=mmap.MAP_SHARED, prot=mmap.PROT_READ | mmap.PROT_WRITE)


def unmap_memory(data: mmap.mmap) -> None:
    """Unmap a mapping made by :func:`map_memory`."""
    data.close()