# fatpack
# Packs a host directory into a FAT/FAT32/exFAT image file

from .block_device import ImageBlockDevice
from .config import ImageConfig
from .device_stream import DeviceStream
from .fat_service import FatService
from .ingest import TreeIngestor
from .packer import ImagePacker

__all__ = ['ImageBlockDevice', 'DeviceStream', 'ImageConfig', 'FatService', 'TreeIngestor', 'ImagePacker']
