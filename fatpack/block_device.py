"""Virtual block device backed by a single host file.

The filesystem service sees the image as an array of 512-byte sectors on
drive 0. Every call checks the drive id and readiness before touching the
file, and all I/O is in whole sectors: a read or write that cannot be
satisfied completely is an error, never a partial success.

Lifecycle:
    NOT_INITIALIZED --initialize()--> READY --close()--> NOT_INITIALIZED
"""
import os
from typing import Optional

from .constants import SECTOR_SIZE, ERASE_BLOCK_SIZE, DRIVE_ID, StatusFlags, Control
from .errors import ConfigurationError, ParameterError, DeviceNotReady, BlockIOError


def log(msg):
    print(f"[BlockDevice] {msg}", flush=True)


class ImageBlockDevice:
    """Sector-addressed view of a fixed-size image file."""

    def __init__(self, image_path: str, image_size: int,
                 sector_size: int = SECTOR_SIZE, drive: int = DRIVE_ID):
        if sector_size != SECTOR_SIZE:
            raise ConfigurationError(f"Unsupported sector size {sector_size}")
        if image_size <= 0 or image_size % sector_size:
            raise ConfigurationError(
                f"Image size {image_size} is not a positive multiple of {sector_size}")

        self.path = image_path
        self.size = image_size
        self.sector_size = sector_size
        self.drive = drive

        self._fp = None
        self._status = StatusFlags.NOT_INITIALIZED

    @classmethod
    def from_config(cls, config) -> 'ImageBlockDevice':
        return cls(config.image_path, config.image_size, config.sector_size)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    @property
    def is_ready(self) -> bool:
        return self._status == StatusFlags.READY

    def status(self, drive: int) -> StatusFlags:
        """Current status flags; NO_DISK for any drive we do not serve."""
        if drive != self.drive:
            return StatusFlags.NO_DISK
        return self._status

    def initialize(self, drive: int) -> StatusFlags:
        """Create the backing file from scratch at exactly the configured size.

        A device that is already READY is left untouched. On failure the
        handle is released and NOT_INITIALIZED stays set in the result.
        """
        if drive != self.drive:
            return StatusFlags.NO_DISK

        if self._status == StatusFlags.READY:
            return self._status

        # Never reuse an old image: every run rebuilds from scratch
        try:
            os.remove(self.path)
        except FileNotFoundError:
            pass
        except OSError as e:
            log(f"Error: cannot remove old image {self.path}: {e}")
            return self._status

        log(f"Creating a new image: {self.path}")
        fp = None
        try:
            fp = open(self.path, 'w+b')
            # Extend to full size by writing the last byte
            fp.seek(self.size - 1)
            fp.write(b'\x00')
            fp.flush()
            fp.seek(0)
        except OSError as e:
            log(f"Error: failed to create image file: {e}")
            if fp is not None:
                fp.close()
            return self._status

        self._fp = fp
        self._status &= ~StatusFlags.NOT_INITIALIZED
        log(f"Successfully created a {self.size / 1024 / 1024:.2f} MB disk image")
        return self._status

    def read(self, drive: int, buffer, sector: int, count: int):
        """Read `count` sectors starting at `sector` into `buffer`."""
        self._check_ready(drive)
        view = self._sector_view(buffer, sector, count)
        offset = sector * self.sector_size

        try:
            self._fp.seek(offset)
            got = self._fp.readinto(view)
        except OSError as e:
            raise BlockIOError(f"Read of {count} sectors at {sector} failed: {e}", self.path) from e

        if got != len(view):
            raise BlockIOError(
                f"Short read at sector {sector}: {got or 0}/{len(view)} bytes", self.path)

    def write(self, drive: int, data, sector: int, count: int):
        """Write `count` sectors from `data` starting at `sector`."""
        self._check_ready(drive)
        view = self._sector_view(data, sector, count)
        offset = sector * self.sector_size

        try:
            self._fp.seek(offset)
            written = self._fp.write(view)
        except OSError as e:
            raise BlockIOError(f"Write of {count} sectors at {sector} failed: {e}", self.path) from e

        if written != len(view):
            raise BlockIOError(
                f"Short write at sector {sector}: {written}/{len(view)} bytes", self.path)

    def control(self, drive: int, command: int) -> Optional[int]:
        """Miscellaneous device functions. Returns the queried value, if any."""
        self._check_ready(drive)

        try:
            command = Control(command)
        except ValueError:
            raise ParameterError(f"Unknown control command {command!r}")

        if command == Control.SYNC:
            try:
                self._fp.flush()
            except OSError as e:
                raise BlockIOError(f"Flush failed: {e}", self.path) from e
            return None

        if command == Control.GET_SECTOR_COUNT:
            if self.size == 0:
                raise BlockIOError("Image size is zero", self.path)
            return self.size // self.sector_size

        if command == Control.GET_SECTOR_SIZE:
            return self.sector_size

        # Control.GET_BLOCK_SIZE
        return ERASE_BLOCK_SIZE

    def close(self):
        """Flush and release the backing file."""
        if self._fp is None:
            return
        try:
            self._fp.flush()
        finally:
            self._fp.close()
            self._fp = None
            self._status |= StatusFlags.NOT_INITIALIZED

    def _check_ready(self, drive: int):
        if drive != self.drive:
            raise DeviceNotReady(f"No such drive {drive} (only drive {self.drive})")
        if self._status & StatusFlags.NOT_INITIALIZED:
            raise DeviceNotReady("Block device is not initialized", self.path)

    def _sector_view(self, buffer, sector: int, count: int) -> memoryview:
        """Validate a sector range and return the matching slice of `buffer`."""
        if sector < 0 or count <= 0:
            raise ParameterError(f"Invalid sector range: start={sector} count={count}")

        nbytes = count * self.sector_size
        view = memoryview(buffer).cast('B')
        if len(view) < nbytes:
            raise ParameterError(f"Buffer holds {len(view)} bytes, {nbytes} needed")

        if (sector + count) * self.sector_size > self.size:
            raise BlockIOError(
                f"Sectors {sector}..{sector + count - 1} lie beyond the end of the "
                f"{self.size // self.sector_size}-sector image", self.path)

        return view[:nbytes]
