"""Byte stream over an ImageBlockDevice.

FATtools drives its disks through a small file-like surface: seek, tell,
readinto, read, write and close. DeviceStream provides that surface and
turns every byte range into whole-sector reads and writes on the block
device. Ranges that start or end inside a sector are read first and merged,
so neighbouring bytes of those sectors survive. Flushing maps to SYNC.
"""
import os

from .block_device import ImageBlockDevice
from .constants import DRIVE_ID, Control
from .errors import BlockIOError


class DeviceStream:
    """Seekable stream whose I/O goes only through `device`."""

    def __init__(self, device: ImageBlockDevice, drive: int = DRIVE_ID):
        self.device = device
        self.drive = drive
        self.name = device.path
        self.sector_size = device.control(drive, Control.GET_SECTOR_SIZE)
        self.size = device.control(drive, Control.GET_SECTOR_COUNT) * self.sector_size
        self.pos = 0
        self.closed = False

    def __repr__(self):
        return f"<DeviceStream {self.name!r} drive={self.drive} @{self.pos}>"

    def seek(self, offset: int, whence: int = os.SEEK_SET) -> int:
        if whence == os.SEEK_CUR:
            offset += self.pos
        elif whence == os.SEEK_END:
            offset += self.size
        elif whence != os.SEEK_SET:
            raise ValueError(f"Invalid whence {whence!r}")
        if offset < 0:
            raise ValueError(f"Negative seek position {offset}")
        self.pos = offset
        return self.pos

    def tell(self) -> int:
        return self.pos

    def readable(self) -> bool:
        return True

    def writable(self) -> bool:
        return True

    def seekable(self) -> bool:
        return True

    def _span(self, length: int):
        """First sector, sector count and offset into the first sector."""
        first = self.pos // self.sector_size
        last = (self.pos + length - 1) // self.sector_size
        return first, last - first + 1, self.pos - first * self.sector_size

    def readinto(self, buffer) -> int:
        """Fill `buffer` from the current position. Stops at the end of the image."""
        view = memoryview(buffer).cast('B')
        length = min(len(view), max(0, self.size - self.pos))
        if length <= 0:
            return 0

        first, count, offset = self._span(length)
        if offset == 0 and length == count * self.sector_size:
            self.device.read(self.drive, view, first, count)
        else:
            scratch = bytearray(count * self.sector_size)
            self.device.read(self.drive, scratch, first, count)
            view[:length] = scratch[offset:offset + length]

        self.pos += length
        return length

    def read(self, size: int = -1) -> bytes:
        if size is None or size < 0:
            size = max(0, self.size - self.pos)
        buf = bytearray(size)
        n = self.readinto(buf)
        return bytes(buf[:n])

    def write(self, data) -> int:
        """Write `data` at the current position. The image never grows."""
        view = memoryview(data).cast('B')
        length = len(view)
        if not length:
            return 0
        if self.pos + length > self.size:
            raise BlockIOError(
                f"Write of {length} bytes at offset {self.pos} runs past the end of "
                f"the {self.size}-byte image", self.name)

        first, count, offset = self._span(length)
        if offset == 0 and length == count * self.sector_size:
            self.device.write(self.drive, view, first, count)
        else:
            # Partial sectors at either edge: read, merge, write back
            scratch = bytearray(count * self.sector_size)
            self.device.read(self.drive, scratch, first, count)
            scratch[offset:offset + length] = view
            self.device.write(self.drive, scratch, first, count)

        self.pos += length
        return length

    def flush(self):
        self.device.control(self.drive, Control.SYNC)

    def close(self):
        """Flush the device. The device itself stays open."""
        if self.closed:
            return
        self.flush()
        self.closed = True
