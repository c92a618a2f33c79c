"""fatpack main entry point.

Builds a FAT, FAT32 or exFAT image file from a host directory:
create the image, format it, mount it, copy the tree in, unmount.

Usage:
    fatpack [image] [size_in_bytes] [source_folder] [--format exfat]
    python3 -m fatpack.packer assets.img 33554432 ./assets -f fat32
"""
import argparse
import enum
import os
import sys
from typing import List, Optional

from .block_device import ImageBlockDevice
from .config import ImageConfig
from .constants import (
    DRIVE_ID, FS_TYPES,
    DEFAULT_IMAGE_PATH, DEFAULT_IMAGE_SIZE, DEFAULT_SOURCE_DIR, DEFAULT_FS_TYPE
)
from .errors import FatPackError, ConfigurationError, DeviceNotReady
from .fat_service import FatService, FilesystemService
from .ingest import TreeIngestor, IngestStats


def log(msg):
    print(f"[Packer] {msg}", flush=True)


class Stage(enum.Enum):
    UNFORMATTED = 'unformatted'
    FORMATTED = 'formatted'
    MOUNTED = 'mounted'
    INGESTED = 'ingested'
    UNMOUNTED = 'unmounted'


class ImagePacker:
    """Runs the packing stages in order and stops at the first failure.

    Once the volume is mounted, unmount is always attempted, even when
    ingestion failed; a failing unmount then never hides the ingestion error.
    """

    def __init__(self, config: ImageConfig,
                 device: Optional[ImageBlockDevice] = None,
                 fs: Optional[FilesystemService] = None):
        self.config = config
        self.device = device if device is not None else ImageBlockDevice.from_config(config)
        self.fs = fs if fs is not None else FatService(self.device)
        self.stage = Stage.UNFORMATTED
        self.stats: Optional[IngestStats] = None

    def run(self) -> IngestStats:
        try:
            return self._run()
        finally:
            self.device.close()

    def _run(self) -> IngestStats:
        status = self.device.initialize(DRIVE_ID)
        if status:
            raise DeviceNotReady(
                f"Could not initialize image (status {status!r})", self.config.image_path)

        self.fs.format(DRIVE_ID, self.config.fs_type)
        self.stage = Stage.FORMATTED

        self.fs.mount(DRIVE_ID)
        self.stage = Stage.MOUNTED

        log(f"Copying '{self.config.source_dir}' to the root of the image...")
        try:
            self.stats = TreeIngestor(self.fs).ingest(self.config.source_dir)
        except Exception:
            self._unmount_after_failure()
            raise
        self.stage = Stage.INGESTED

        self.fs.unmount(DRIVE_ID)
        self.stage = Stage.UNMOUNTED
        return self.stats

    def _unmount_after_failure(self):
        try:
            self.fs.unmount(DRIVE_ID)
        except FatPackError as e:
            log(f"Unmount after failed copy also failed: {e}")
            return
        self.stage = Stage.UNMOUNTED


def parse_size(text: str) -> int:
    """Parse a byte count: a positive decimal integer and nothing else."""
    if not (text.isascii() and text.isdigit()):
        raise ValueError(text)
    size = int(text)
    if size == 0:
        raise ValueError(text)
    return size


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='fatpack',
        description='Pack a directory into a FAT/FAT32/exFAT image file'
    )
    parser.add_argument('image', nargs='?', default=DEFAULT_IMAGE_PATH,
                        help=f'Output image path (default: {DEFAULT_IMAGE_PATH})')
    parser.add_argument('size', nargs='?', default=str(DEFAULT_IMAGE_SIZE),
                        help=f'Image size in bytes (default: {DEFAULT_IMAGE_SIZE})')
    parser.add_argument('source', nargs='?', default=DEFAULT_SOURCE_DIR,
                        help=f'Folder to pack (default: {DEFAULT_SOURCE_DIR})')
    parser.add_argument('-f', '--format', dest='fs_type', type=str.lower,
                        choices=FS_TYPES, default=DEFAULT_FS_TYPE,
                        help=f'Filesystem format (default: {DEFAULT_FS_TYPE})')
    return parser


def print_banner(config: ImageConfig):
    print("-" * 40)
    print("FAT Image Packer Configuration:")
    print(f"  - Image Path:    {config.image_path}")
    print(f"  - Image Size:    {config.image_size} bytes ({config.image_size_mib:.2f} MiB)")
    print(f"  - Source Folder: {config.source_dir}")
    print(f"  - Format:        {config.fs_type}")
    print("-" * 40, flush=True)


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        size = parse_size(args.size)
    except ValueError:
        print(f"Error: Invalid size '{args.size}'. Please provide a positive integer for bytes.",
              file=sys.stderr)
        return 1

    try:
        config = ImageConfig(
            image_path=args.image,
            image_size=size,
            source_dir=args.source,
            fs_type=args.fs_type
        )
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print_banner(config)

    # A missing source folder packs as an empty image
    try:
        os.makedirs(config.source_dir, exist_ok=True)
    except OSError as e:
        print(f"ERROR: Cannot create source folder '{config.source_dir}': {e}", file=sys.stderr)
        return 1

    packer = ImagePacker(config)
    try:
        stats = packer.run()
    except FatPackError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    log(f"Successfully copied all contents from '{config.source_dir}' "
        f"({stats.directories} dirs, {stats.files} files, {stats.bytes_copied} bytes)")
    return 0


if __name__ == '__main__':
    sys.exit(main())
