"""Shared fixtures for the fatpack test suite."""

import locale
import os
import sys

import pytest
from FATtools.FAT import Chain
from FATtools.Volume import vopen, vclose

# Add parent to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from fatpack.block_device import ImageBlockDevice
from fatpack.errors import CreateError, WriteError
from fatpack.fat_service import split_image_path


class FakeFile:
    def __init__(self, path):
        self.path = path
        self.closed = False


class FakeFilesystem:
    """In-memory FilesystemService that records every call.

    fail_mkdir: image paths whose mkdir raises CreateError
    capacity:   total bytes the volume accepts before writes come up short
    """

    def __init__(self, fail_mkdir=(), capacity=None, dirs=()):
        self.fail_mkdir = set(fail_mkdir)
        self.capacity = capacity
        self.dirs = set(dirs)
        self.files = {}
        self.ops = []
        self.open_handles = 0
        self.max_write = 0
        self.used = 0

    def format(self, drive, fs_type):
        self.ops.append(('format', fs_type))

    def mount(self, drive):
        self.ops.append(('mount',))

    def unmount(self, drive):
        self.ops.append(('unmount',))

    def mkdir(self, path):
        self.ops.append(('mkdir', path))
        if path in self.fail_mkdir:
            raise CreateError(f"Cannot create directory '{path}'", path)
        if path in self.dirs:
            return False
        self.dirs.add(path)
        return True

    def open_for_write(self, path):
        self.ops.append(('open', path))
        self.files[path] = bytearray()
        self.open_handles += 1
        return FakeFile(path)

    def write(self, f, data):
        data = bytes(data)
        self.max_write = max(self.max_write, len(data))
        if self.capacity is not None:
            data = data[:max(0, self.capacity - self.used)]
        self.files[f.path] += data
        self.used += len(data)
        return len(data)

    def close(self, f):
        if not f.closed:
            f.closed = True
            self.open_handles -= 1


class CountingDevice(ImageBlockDevice):
    """Block device that counts the sector calls it serves."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.reads = 0
        self.writes = 0

    def read(self, drive, buffer, sector, count):
        self.reads += 1
        return super().read(drive, buffer, sector, count)

    def write(self, drive, data, sector, count):
        self.writes += 1
        return super().write(drive, data, sector, count)


@pytest.fixture
def fake_fs():
    return FakeFilesystem()


@pytest.fixture(autouse=True)
def fattools_code_page(monkeypatch):
    """FATtools looks up 'encodings.<locale encoding>' for exFAT and only
    knows the upper-case 'UTF-8' spelling that Python UTF-8 mode lacks."""
    if locale.getpreferredencoding() == 'utf-8':
        monkeypatch.setattr(locale, 'getpreferredencoding', lambda do_setlocale=True: 'UTF-8')


def build_tree(root, layout):
    """Create files and directories under `root`.

    layout maps relative paths to bytes (a file) or None (a directory).
    """
    for rel_path, content in layout.items():
        full = os.path.join(root, *rel_path.split('/'))
        if content is None:
            os.makedirs(full, exist_ok=True)
        else:
            os.makedirs(os.path.dirname(full), exist_ok=True)
            with open(full, 'wb') as f:
                f.write(content)
    return str(root)


@pytest.fixture
def sample_tree(tmp_path):
    """The a/, a/x.txt, a/b/, a/b/y.bin tree."""
    return build_tree(tmp_path / 'src', {
        'a': None,
        'a/x.txt': b'hello from x\n',
        'a/b': None,
        'a/b/y.bin': bytes(range(256)) * 40,
    })


def _open_image_file(table, name):
    """Contents of `name` in directory `table`."""
    handle = table.open(name)
    if handle.IsValid:
        return bytes(handle.read())

    # Name lookups can miss long names on FAT12 volumes opened read-only,
    # so match the directory listing and read the cluster chain directly
    for entry in table.iterator():
        if entry.Name() == name and not entry.IsDir():
            return bytes(Chain(table.boot, table.fat, entry.Start(), entry.dwFileSize).read())
    raise AssertionError(f"missing file {name!r}")


def read_image_file(image_path, path):
    """Read a file back out of a closed image."""
    root = vopen(image_path, 'rb')
    try:
        parent, name = split_image_path(path)
        table = root.opendir(parent) if parent else root
        assert table is not None, f"missing directory {parent!r}"
        return _open_image_file(table, name)
    finally:
        vclose(root)


def image_has_dir(image_path, path):
    root = vopen(image_path, 'rb')
    try:
        return root.opendir(path) is not None
    finally:
        vclose(root)


def image_has_entry(image_path, name):
    """True if the root directory of the image holds `name`."""
    root = vopen(image_path, 'rb')
    try:
        return bool(root.find(name))
    finally:
        vclose(root)
