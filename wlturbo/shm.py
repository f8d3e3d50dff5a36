"""Shared-memory pools and buffers for pixel data."""

from __future__ import annotations

import mmap
import os
from dataclasses import dataclass
from enum import IntEnum

from wlturbo.fdpass import create_anonymous_file, map_memory, unmap_memory

_ALIGNMENT = 64


class PixelFormat(IntEnum):
    """Pixel formats understood by the compositor."""

    ARGB8888 = 0
    XRGB8888 = 1
    RGB888 = 0x34324752
    BGR888 = 0x34324742
    RGB565 = 0x36314752
    XRGB1555 = 0x35315258
    Y8 = 0x20203859


@dataclass
class ShmPool:
    """A memory-mapped anonymous file from which buffers are carved."""

    fd: int
    size: int
    data: mmap.mmap | None
    offset: int = 0

    @classmethod
    def create(cls, size: int) -> ShmPool:
        """Create and map a pool of ``size`` bytes."""
        try:
            fd = create_anonymous_file(size)
        except OSError as exc:
            raise OSError(f"failed to create anonymous file: {exc}") from exc
        try:
            data = map_memory(fd, size)
        except (OSError, ValueError) as exc:
            os.close(fd)
            raise OSError(f"failed to map memory: {exc}") from exc
        return cls(fd=fd, size=size, data=data)

    def close(self) -> None:
        """Unmap the memory and close the descriptor; safe to call twice."""
        if self.data is not None:
            unmap_memory(self.data)
            self.data = None
        if self.fd >= 0:
            os.close(self.fd)
            self.fd = -1

    def __enter__(self) -> ShmPool:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def allocate_buffer(self, width: int, height: int, stride: int, format: int) -> ShmBuffer:
        """Reserve ``height * stride`` bytes; the next buffer starts 64-byte aligned."""
        size = height * stride
        if self.offset + size > self.size:
            raise ValueError(
                f"insufficient space in pool: need {size}, have {self.size - self.offset}"
            )
        buffer = ShmBuffer(
            pool=self,
            offset=self.offset,
            width=width,
            height=height,
            stride=stride,
            format=format,
        )
        self.offset += size
        self.offset += (_ALIGNMENT - self.offset % _ALIGNMENT) % _ALIGNMENT
        return buffer


@dataclass
class ShmBuffer:
    """A region of a pool holding one image."""

    pool: ShmPool
    offset: int
    width: int
    height: int
    stride: int
    format: int

    def data(self) -> memoryview:
        """Writable view of this buffer's bytes inside the pool mapping."""
        if self.pool.data is None:
            raise ValueError("pool is closed")
        size = self.height * self.stride
        return memoryview(self.pool.data)[self.offset : self.offset + size]


def create_shm_pool(size: int) -> ShmPool:
    """Create a shared-memory pool of ``size`` bytes."""
    return ShmPool.create(size)