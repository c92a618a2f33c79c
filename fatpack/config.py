"""Immutable run configuration."""

from dataclasses import dataclass

from .constants import (
    SECTOR_SIZE, FS_TYPES,
    DEFAULT_IMAGE_PATH, DEFAULT_IMAGE_SIZE, DEFAULT_SOURCE_DIR, DEFAULT_FS_TYPE
)
from .errors import ConfigurationError


@dataclass(frozen=True)
class ImageConfig:
    """Describes the image to build and where its contents come from.

    Created once from the command line and handed to the packer; the
    block device only ever sees image_path, image_size and sector_size.
    """
    image_path: str = DEFAULT_IMAGE_PATH
    image_size: int = DEFAULT_IMAGE_SIZE
    source_dir: str = DEFAULT_SOURCE_DIR
    fs_type: str = DEFAULT_FS_TYPE
    sector_size: int = SECTOR_SIZE

    def __post_init__(self):
        if self.sector_size != SECTOR_SIZE:
            raise ConfigurationError(
                f"Unsupported sector size {self.sector_size}, only {SECTOR_SIZE} is supported")

        if isinstance(self.image_size, bool) or not isinstance(self.image_size, int):
            raise ConfigurationError(f"Image size must be an integer, got {self.image_size!r}")
        if self.image_size <= 0:
            raise ConfigurationError(f"Image size must be positive, got {self.image_size}")
        if self.image_size % self.sector_size:
            raise ConfigurationError(
                f"Image size {self.image_size} is not a multiple of the "
                f"{self.sector_size}-byte sector size")

        fs_type = str(self.fs_type).lower()
        if fs_type not in FS_TYPES:
            raise ConfigurationError(
                f"Unknown filesystem format '{self.fs_type}' (choose from {', '.join(FS_TYPES)})")
        # frozen: normalize through object.__setattr__
        object.__setattr__(self, 'fs_type', fs_type)

        if not self.image_path:
            raise ConfigurationError("Image path must not be empty")

    @property
    def sector_count(self) -> int:
        return self.image_size // self.sector_size

    @property
    def image_size_mib(self) -> float:
        return self.image_size / (1024 * 1024)
