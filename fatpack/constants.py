"""Constants shared by the block device, filesystem service and packer."""

import enum

# Geometry
SECTOR_SIZE = 512
ERASE_BLOCK_SIZE = 1        # in sectors; a host file has no erase granularity

# Single drive model: only drive 0 is ever serviced
DRIVE_ID = 0

# Bytes moved per read/write while copying a host file into the image
COPY_BUFFER_SIZE = 8 * 1024

# Defaults used when the command line does not override them
DEFAULT_IMAGE_PATH = 'fatfs.img'
DEFAULT_IMAGE_SIZE = 32 * 1024 * 1024  # 32 MiB
DEFAULT_SOURCE_DIR = 'assets_to_pack'

# Filesystem format selectors
FS_FAT = 'fat'
FS_FAT32 = 'fat32'
FS_EXFAT = 'exfat'
FS_TYPES = (FS_FAT, FS_FAT32, FS_EXFAT)
DEFAULT_FS_TYPE = FS_EXFAT


class StatusFlags(enum.IntFlag):
    """Block device status bits. READY is the empty set."""
    READY = 0
    NOT_INITIALIZED = 0x01
    NO_DISK = 0x02


class Control(enum.IntEnum):
    """Block device control commands."""
    SYNC = 0
    GET_SECTOR_COUNT = 1
    GET_SECTOR_SIZE = 2
    GET_BLOCK_SIZE = 3
