"""Exception hierarchy for fatpack.

Every failure surfaces as a FatPackError subclass; the packer reports the
first one raised and exits non-zero.
"""

from typing import Optional


class FatPackError(Exception):
    """Base class. `path` names the host or image path involved, if any."""

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.path = path


class ConfigurationError(FatPackError):
    """Invalid size, format or drive, rejected before any I/O."""


class ParameterError(ConfigurationError):
    """Unknown control command or undersized buffer."""


class DeviceNotReady(FatPackError):
    """Block device used before initialization or with the wrong drive id."""


class BlockIOError(FatPackError):
    """Seek, short read/write or flush failure against the backing file."""


class HostAccessError(FatPackError):
    """A host file or directory could not be opened, listed or read."""


class FormatError(FatPackError):
    pass


class MountError(FatPackError):
    pass


class CreateError(FatPackError):
    """A directory or file could not be created inside the image."""


class WriteError(FatPackError):
    """Writing into an image file failed or came up short (volume full)."""
