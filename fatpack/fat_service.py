"""Filesystem service: format, mount and populate a FAT/FAT32/exFAT image.

The on-disk work is delegated to FATtools. FatService is bound to an
ImageBlockDevice: the device owns creation and sizing of the image file,
and every sector FATtools reads or writes goes through the device's
read/write calls via a DeviceStream. Paths inside the image are
'/'-separated and relative to the volume root ('' is the root itself).
"""
import locale
from io import BytesIO
from typing import Optional, Protocol

from FATtools.disk import disk
from FATtools.Volume import vopen, vclose
from FATtools.mkfat import fat_mkfs, exfat_mkfs

from .block_device import ImageBlockDevice
from .constants import FS_FAT, FS_FAT32, FS_EXFAT, Control
from .device_stream import DeviceStream
from .errors import (
    ConfigurationError, DeviceNotReady, FormatError, MountError,
    CreateError, WriteError
)


def log(msg):
    print(f"[FatService] {msg}", flush=True)


class FilesystemService(Protocol):
    """What the ingestion engine and packer need from a filesystem."""

    def format(self, drive: int, fs_type: str) -> None: ...

    def mount(self, drive: int) -> None: ...

    def unmount(self, drive: int) -> None: ...

    def mkdir(self, path: str) -> bool: ...

    def open_for_write(self, path: str): ...

    def write(self, handle, data) -> int: ...

    def close(self, handle) -> None: ...


class ImageFile:
    """An open, writable file inside the mounted image."""

    def __init__(self, path: str, handle):
        self.path = path
        self.handle = handle
        self.closed = False

    def __repr__(self):
        state = 'closed' if self.closed else 'open'
        return f"<ImageFile {self.path!r} {state}>"


def split_image_path(path: str):
    """Split 'a/b/c' into ('a/b', 'c'). Leading/trailing slashes are ignored."""
    parts = [p for p in path.split('/') if p]
    if not parts:
        return '', ''
    return '/'.join(parts[:-1]), parts[-1]


def open_device_disk(device: ImageBlockDevice, drive: int) -> disk:
    """A FATtools disk whose sector I/O is served by `device`."""
    stream = DeviceStream(device, drive)
    # Start from an empty ramdisk, then swap in the device-backed stream
    d = disk(BytesIO(), 'ramdisk')
    d._file = stream
    d.size = stream.size
    return d


def _is_dirtable(obj) -> bool:
    # vopen hands back a Dirtable on success, something else otherwise
    return obj is not None and hasattr(obj, 'opendir') and hasattr(obj, 'create')


class FatService:
    """FATtools-backed implementation of FilesystemService."""

    def __init__(self, device: ImageBlockDevice):
        self.device = device
        self.root = None
        self.fs_type: Optional[str] = None

    @property
    def mounted(self) -> bool:
        return self.root is not None

    def format(self, drive: int, fs_type: str):
        """Lay down an empty filesystem of the requested type."""
        self._check_device(drive)
        if self.mounted:
            raise FormatError("Cannot format a mounted volume", self.device.path)
        if fs_type not in (FS_FAT, FS_FAT32, FS_EXFAT):
            raise ConfigurationError(f"Unknown filesystem format '{fs_type}'")

        sector_size = self.device.control(drive, Control.GET_SECTOR_SIZE)
        size = self.device.control(drive, Control.GET_SECTOR_COUNT) * sector_size
        self.device.control(drive, Control.SYNC)

        log(f"Formatting {self.device.path} as {fs_type} ({size} bytes)...")
        d = open_device_disk(self.device, drive)
        try:
            if fs_type == FS_EXFAT:
                ret = exfat_mkfs(d, size, sector=sector_size, params={})
            else:
                fat_bits = self._pick_fat_bits(d, size, sector_size, fs_type)
                ret = fat_mkfs(d, size, sector=sector_size, params={'fat_bits': fat_bits})
        except FormatError:
            raise
        except ImportError as e:
            # FATtools builds the exFAT upcase table from the locale's code page
            raise FormatError(
                f"Format failed: FATtools has no code page for the locale encoding "
                f"'{locale.getpreferredencoding()}' ({e}). Use a UTF-8 locale such as "
                f"LANG=C.UTF-8 with Python UTF-8 mode off (PYTHONUTF8=0)",
                self.device.path) from e
        except Exception as e:
            raise FormatError(f"Format failed: {e}", self.device.path) from e
        finally:
            vclose(d)

        if ret != 0:
            raise FormatError(f"Format as {fs_type} failed with code {ret}", self.device.path)
        self.fs_type = fs_type
        log("Format successful")

    def _pick_fat_bits(self, d, size: int, sector_size: int, fs_type: str) -> int:
        if fs_type == FS_FAT32:
            return 32

        # Plain FAT: FAT16 where it fits, FAT12 for the smallest images
        allowed = fat_mkfs(d, size, sector=sector_size, params={'query_info': 1})
        if isinstance(allowed, dict):
            for bits in (16, 12):
                if allowed.get(bits):
                    return bits
        raise FormatError(
            f"A {size}-byte image cannot hold FAT12/FAT16, use fat32 or exfat",
            self.device.path)

    def mount(self, drive: int):
        """Open the volume root for writing."""
        self._check_device(drive)
        if self.mounted:
            return

        d = open_device_disk(self.device, drive)
        try:
            root = vopen(d, 'r+b')
        except Exception as e:
            d.close()
            raise MountError(f"Mount failed: {e}", self.device.path) from e

        if not _is_dirtable(root):
            d.close()
            raise MountError(f"No recognizable filesystem on image ({root!r})", self.device.path)

        self.root = root
        log("Mount successful")

    def unmount(self, drive: int):
        """Commit all changes and close the volume."""
        if not self.mounted:
            return

        root, self.root = self.root, None
        try:
            vclose(root)
        except Exception as e:
            raise MountError(f"Unmount failed: {e}", self.device.path) from e
        self.device.control(drive, Control.SYNC)
        log("Unmounted the disk image")

    def mkdir(self, path: str) -> bool:
        """Create a directory. Returns False if it already exists."""
        parent_path, name = split_image_path(path)
        if not name:
            return False

        parent = self._opendir(parent_path)
        if parent is None:
            raise CreateError(f"Parent directory of '{path}' does not exist", path)

        entry = parent.find(name)
        if entry:
            if entry.IsDir():
                return False
            raise CreateError(f"A file named '{path}' already exists", path)

        try:
            created = parent.mkdir(name)
        except Exception as e:
            raise CreateError(f"Cannot create directory '{path}': {e}", path) from e
        if not created:
            raise CreateError(f"Cannot create directory '{path}'", path)
        return True

    def open_for_write(self, path: str) -> ImageFile:
        """Create `path`, discarding any existing file of that name."""
        parent_path, name = split_image_path(path)
        parent = self._opendir(parent_path)
        if parent is None or not name:
            raise CreateError(f"Cannot create file '{path}': no such directory", path)

        try:
            handle = parent.create(name)
        except Exception as e:
            raise CreateError(f"Cannot create file '{path}': {e}", path) from e
        return ImageFile(path, handle)

    def write(self, f: ImageFile, data) -> int:
        """Append `data` to an open image file. Returns the byte count stored."""
        if f.closed:
            raise WriteError(f"Write to closed file '{f.path}'", f.path)

        try:
            before = f.handle.tell()
            f.handle.write(bytes(data))
            return f.handle.tell() - before
        except Exception as e:
            raise WriteError(f"Failed writing '{f.path}' (disk may be full): {e}", f.path) from e

    def close(self, f: ImageFile):
        if f.closed:
            return
        f.closed = True
        try:
            f.handle.close()
        except Exception as e:
            raise WriteError(f"Failed closing '{f.path}': {e}", f.path) from e

    def _opendir(self, path: str):
        if not self.mounted:
            raise MountError("Volume is not mounted", self.device.path)
        if not path:
            return self.root
        return self.root.opendir(path)

    def _check_device(self, drive: int):
        if not self.device.is_ready or self.device.status(drive):
            raise DeviceNotReady(
                f"Block device for drive {drive} is not ready", self.device.path)
