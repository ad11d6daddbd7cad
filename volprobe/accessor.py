"""
Sector Accessor — partition-relative sector reads over a raw image.

APPROACH
────────
1. Memory-mapped I/O (mmap) for zero-copy reads — the OS handles paging.
2. Locked seek + read fallback when mmap is unavailable (raw devices,
   32-bit address space), so concurrent probes never interleave seeks.
3. Every read a detector makes goes through ``read_checked``: bounds are
   verified BEFORE touching the image and short reads are caught AFTER,
   both surfacing as ``OutOfRange`` (never as an I/O fault).
4. Structures defined at a fixed byte offset are located with
   ``read_bytes`` (sector-size normalization), and optical media that
   carry a 512-byte layout inside 2048/2352/2448-byte sectors are
   searched with ``probe_sub_offsets`` over a fixed candidate list.
"""

import os
import mmap
import logging
import threading
from dataclasses import dataclass
from typing import Optional, BinaryIO, Callable

from .errors import OutOfRange

logger = logging.getLogger(__name__)

# Sector size assumed for plain image files
SECTOR_SIZE = 512

# Physical sector sizes of optical media (cooked, raw Mode 2, raw + subchannel)
OPTICAL_SECTOR_SIZES = (2048, 2336, 2352, 2448)

# Where a 512-byte-sector layout may sit inside a larger optical sector
SUB_OFFSETS = (0, 0x200, 0x400, 0x600, 0x800, 0xA00)


def is_optical(sector_size: int) -> bool:
    return sector_size in OPTICAL_SECTOR_SIZES


def sectors_for(nbytes: int, sector_size: int) -> int:
    """Whole sectors needed to hold ``nbytes``."""
    return (nbytes + sector_size - 1) // sector_size


@dataclass(frozen=True)
class Partition:
    """A run of sectors on the media; ``end`` is the last LBA, inclusive."""
    start: int
    end: int
    sector_size_hint: int = 0       # 0 = use the accessor's sector size

    @property
    def length(self) -> int:
        return self.end - self.start + 1

    def size(self, sector_size: int) -> int:
        return self.length * sector_size

    @classmethod
    def whole(cls, accessor: "SectorAccessor") -> "Partition":
        return cls(0, max(0, accessor.total_sectors - 1), accessor.sector_size)


class SectorAccessor:
    """
    Fixed-size, zero-indexed sector reads over some media.

    Subclasses supply ``_read(offset, size)``; short results are legal
    at the end of the media and are returned unchanged.
    """

    def __init__(self, sector_size: int, total_size: int):
        if sector_size <= 0:
            raise ValueError(f"invalid sector size {sector_size}")
        self._sector_size = sector_size
        self._size = total_size

    @property
    def sector_size(self) -> int:
        return self._sector_size

    @property
    def total_sectors(self) -> int:
        return self._size // self._sector_size

    @property
    def size(self) -> int:
        return self._size

    def read_sector(self, lba: int) -> bytes:
        return self.read_sectors(lba, 1)

    def read_sectors(self, lba: int, count: int) -> bytes:
        if lba < 0 or count <= 0:
            return b""
        offset = lba * self._sector_size
        if offset >= self._size:
            return b""
        size = min(count * self._sector_size, self._size - offset)
        return self._read(offset, size)

    def _read(self, offset: int, size: int) -> bytes:
        raise NotImplementedError

    def close(self):
        pass

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()


class MemoryAccessor(SectorAccessor):
    """Sectors served from an in-memory image (tests, embedded callers)."""

    def __init__(self, data: bytes, sector_size: int = SECTOR_SIZE):
        super().__init__(sector_size, len(data))
        self._data = bytes(data)

    def _read(self, offset: int, size: int) -> bytes:
        return self._data[offset:offset + size]


class ImageAccessor(SectorAccessor):
    """
    Sectors served from a raw image file or block device.

    Usage:
        with ImageAccessor.open("disk.img", sector_size=512) as acc:
            data = acc.read_sectors(0, 4)
    """

    def __init__(
        self,
        fd: BinaryIO,
        total_size: int,
        sector_size: int = SECTOR_SIZE,
        use_mmap: bool = True,
    ):
        super().__init__(sector_size, total_size)
        self._fd = fd
        self._mmap: Optional[mmap.mmap] = None
        self._lock = threading.Lock()
        self._owns_fd = False

        if use_mmap and total_size > 0:
            self._try_mmap()

    @classmethod
    def open(cls, path: str, sector_size: int = SECTOR_SIZE,
             use_mmap: bool = True) -> "ImageAccessor":
        fh = open(path, "rb")
        try:
            fh.seek(0, os.SEEK_END)
            size = fh.tell()
            fh.seek(0)
        except OSError:
            fh.close()
            raise
        try:
            acc = cls(fh, size, sector_size=sector_size, use_mmap=use_mmap)
        except Exception:
            fh.close()
            raise
        acc._owns_fd = True
        logger.info("Opened %s: %d bytes, %d-byte sectors", path, size, sector_size)
        return acc

    def _try_mmap(self):
        """Attempt to memory-map the file/device read-only."""
        try:
            self._mmap = mmap.mmap(self._fd.fileno(), 0, access=mmap.ACCESS_READ)
        except (OSError, ValueError, OverflowError) as e:
            # Raw devices on some OSes refuse mmap; buffered reads still work
            logger.info("mmap unavailable (%s), using buffered reads", e)
            self._mmap = None

    @property
    def is_mmap(self) -> bool:
        return self._mmap is not None

    def _read(self, offset: int, size: int) -> bytes:
        if self._mmap is not None:
            return self._mmap[offset:offset + size]
        with self._lock:
            self._fd.seek(offset)
            return self._fd.read(size)

    def close(self):
        """Release mmap resources and the file handle we opened."""
        if self._mmap is not None:
            self._mmap.close()
            self._mmap = None
        if self._owns_fd and self._fd is not None:
            self._fd.close()
            self._fd = None


# ─────────────────────────────────────────────────────────────
#  Partition-relative helpers used by every detector
# ─────────────────────────────────────────────────────────────

def read_checked(accessor: SectorAccessor, partition: Partition,
                 lba: int, count: int) -> bytes:
    """
    Read ``count`` sectors at partition-relative ``lba``.

    Raises OutOfRange when the request leaves the partition or the
    image, or when the image returns fewer bytes than asked for.
    """
    if lba < 0 or count <= 0:
        raise OutOfRange(f"bad request lba={lba} count={count}")
    first = partition.start + lba
    last = first + count - 1
    if last > partition.end:
        raise OutOfRange(f"sectors {first}..{last} beyond partition end {partition.end}")
    if last >= accessor.total_sectors:
        raise OutOfRange(f"sectors {first}..{last} beyond image ({accessor.total_sectors} sectors)")

    data = accessor.read_sectors(first, count)
    want = count * accessor.sector_size
    if len(data) < want:
        raise OutOfRange(f"short read at {first}: {len(data)} of {want} bytes")
    return data


def read_bytes(accessor: SectorAccessor, partition: Partition,
               byte_offset: int, size: int) -> bytes:
    """
    Read ``size`` bytes at a partition-relative byte offset.

    The offset is mapped onto whole sectors of the current sector size
    (target sector + remainder) and the structure is sliced out of the
    concatenated read, so the same call works on 256, 512, 2048 ...
    byte sectors.
    """
    ss = accessor.sector_size
    target, remainder = divmod(byte_offset, ss)
    count = sectors_for(remainder + size, ss)
    data = read_checked(accessor, partition, target, count)
    return bytes(data[remainder:remainder + size])


def probe_sub_offsets(
    accessor: SectorAccessor,
    partition: Partition,
    lba: int,
    size: int,
    predicate: Callable[[bytes], bool],
    offsets: tuple[int, ...] = SUB_OFFSETS,
    sectors: int = 2,
) -> Optional[tuple[int, bytes]]:
    """
    Search fixed sub-offsets of a multi-sector read for a structure.

    Returns ``(sub_offset, structure_bytes)`` for the first offset whose
    ``size`` bytes satisfy ``predicate``, or None.  Offsets whose
    structure would run past the read are skipped.
    """
    data = read_checked(accessor, partition, lba, sectors)
    for off in offsets:
        if off + size > len(data):
            continue
        candidate = bytes(data[off:off + size])
        if predicate(candidate):
            logger.debug("Sub-offset probe hit at 0x%X (LBA %d)", off, lba)
            return off, candidate
    return None
