"""Replicate a host directory tree into a mounted image.

Walk order is deterministic: within each directory, entries are handled
in code-point order of their names, and a subdirectory is finished
completely before its next sibling is looked at. The first failure stops
the whole walk; nothing already written is rolled back. Symlinked
directories are followed unless they lead back to a directory that is
still being walked.
"""
import os
from dataclasses import dataclass
from typing import Iterator, List, Tuple

from .constants import COPY_BUFFER_SIZE
from .errors import HostAccessError, WriteError
from .fat_service import FilesystemService


def log(msg):
    print(f"[Ingest] {msg}", flush=True)


@dataclass
class HostEntry:
    name: str
    is_dir: bool


@dataclass
class WalkFrame:
    """One directory level of the walk."""
    host_dir: str
    dest_dir: str
    entries: Iterator[HostEntry]
    key: Tuple[int, int] = (0, 0)


@dataclass
class IngestStats:
    directories: int = 0
    files: int = 0
    bytes_copied: int = 0


def scan_host_dir(path: str) -> Iterator[HostEntry]:
    """Yield the directories and regular files directly inside `path`, sorted by name.

    Symlinks are followed to decide the entry type. Anything that is neither
    a directory nor a regular file (sockets, FIFOs, devices) is skipped.
    """
    try:
        with os.scandir(path) as it:
            entries = sorted(it, key=lambda e: e.name)
    except OSError as e:
        raise HostAccessError(f"Cannot list directory '{path}': {e}", path) from e

    for entry in entries:
        if entry.name in ('.', '..'):
            continue
        try:
            if entry.is_dir():
                yield HostEntry(entry.name, True)
            elif entry.is_file():
                yield HostEntry(entry.name, False)
            else:
                log(f"Skipping special file '{entry.path}'")
        except OSError as e:
            raise HostAccessError(f"Cannot stat '{entry.path}': {e}", entry.path) from e


def dir_key(path: str) -> Tuple[int, int]:
    """(st_dev, st_ino) of the directory `path` resolves to."""
    try:
        st = os.stat(path)
    except OSError as e:
        raise HostAccessError(f"Cannot stat '{path}': {e}", path) from e
    return st.st_dev, st.st_ino


def image_join(dest_dir: str, name: str) -> str:
    return f"{dest_dir}/{name}" if dest_dir else name


class TreeIngestor:
    """Copies a host tree into a FilesystemService through one reusable buffer.

    The service's write() must consume the data before returning, the same
    buffer is refilled for the next chunk.
    """

    def __init__(self, fs: FilesystemService, buffer_size: int = COPY_BUFFER_SIZE):
        self.fs = fs
        self._buffer = bytearray(buffer_size)
        self.stats = IngestStats()

    def ingest(self, host_dir: str, dest_dir: str = '') -> IngestStats:
        """Mirror everything below `host_dir` into `dest_dir` of the image."""
        stack: List[WalkFrame] = [
            WalkFrame(host_dir, dest_dir, scan_host_dir(host_dir), dir_key(host_dir))]

        while stack:
            frame = stack[-1]
            entry = next(frame.entries, None)
            if entry is None:
                stack.pop()
                continue

            host_child = os.path.join(frame.host_dir, entry.name)
            dest_child = image_join(frame.dest_dir, entry.name)

            if entry.is_dir:
                key = dir_key(host_child)
                # A symlink back to a directory still being walked would never end
                if any(f.key == key for f in stack):
                    log(f"Skipping directory loop: '{host_child}'")
                    continue

                log(f"Creating directory: '{dest_child}'")
                if self.fs.mkdir(dest_child):
                    self.stats.directories += 1
                else:
                    log(f"  '{dest_child}' already exists")
                stack.append(WalkFrame(host_child, dest_child, scan_host_dir(host_child), key))
            else:
                self.copy_file(host_child, dest_child)

        return self.stats

    def copy_file(self, host_path: str, dest_path: str) -> int:
        """Copy one host file into the image. Returns the number of bytes copied.

        Both the host file and the image file are closed on every exit path.
        A failed copy leaves a truncated file in the image.
        """
        try:
            src = open(host_path, 'rb')
        except OSError as e:
            raise HostAccessError(f"Cannot open host file '{host_path}': {e}", host_path) from e

        with src:
            dst = self.fs.open_for_write(dest_path)
            log(f"Copying file: '{host_path}' -> '{dest_path}'")
            copied = 0
            try:
                view = memoryview(self._buffer)
                while True:
                    try:
                        n = src.readinto(self._buffer)
                    except OSError as e:
                        raise HostAccessError(
                            f"Failed reading host file '{host_path}': {e}", host_path) from e
                    if not n:
                        break

                    written = self.fs.write(dst, view[:n])
                    if written < n:
                        raise WriteError(
                            f"Short write to '{dest_path}' ({written}/{n} bytes), disk may be full",
                            dest_path)
                    copied += n
            finally:
                self.fs.close(dst)

        self.stats.files += 1
        self.stats.bytes_copied += copied
        return copied
