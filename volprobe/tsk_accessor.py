"""
TSK Accessor — sector reads through The Sleuth Kit (pytsk3).

libtsk opens raw, split-raw and (when built with libewf) E01 images, so
routing reads through ``pytsk3.Img_Info`` lets every detector run on
containers the plain ``ImageAccessor`` cannot read.  libtsk's own
filesystem verdict is also available as a cross-check for the CLI.

Requires: pytsk3 (pip install pytsk3)
"""

from __future__ import annotations

import logging
import threading
from typing import Optional

from .accessor import SectorAccessor, SECTOR_SIZE

logger = logging.getLogger(__name__)

# Try to import pytsk3 — gracefully degrade if not available
try:
    import pytsk3
    HAS_TSK = True
except ImportError:
    HAS_TSK = False
    logger.info("pytsk3 not installed — TSK image access disabled")


def _fs_names() -> dict:
    return {
        pytsk3.TSK_FS_TYPE_NTFS: "NTFS",
        pytsk3.TSK_FS_TYPE_FAT12: "FAT12",
        pytsk3.TSK_FS_TYPE_FAT16: "FAT16",
        pytsk3.TSK_FS_TYPE_FAT32: "FAT32",
        pytsk3.TSK_FS_TYPE_EXFAT: "exFAT",
        pytsk3.TSK_FS_TYPE_HFS: "HFS+",
        pytsk3.TSK_FS_TYPE_EXT2: "ext2",
        pytsk3.TSK_FS_TYPE_EXT3: "ext3",
        pytsk3.TSK_FS_TYPE_EXT4: "ext4",
        pytsk3.TSK_FS_TYPE_ISO9660: "ISO9660",
        pytsk3.TSK_FS_TYPE_FFS1: "UFS1",
        pytsk3.TSK_FS_TYPE_FFS2: "UFS2",
    }


class TskImageAccessor(SectorAccessor):
    """
    Sectors served by ``pytsk3.Img_Info``.

    Usage:
        with TskImageAccessor("disk.E01") as acc:
            registry.probe(acc, Partition.whole(acc))
    """

    def __init__(self, path: str, sector_size: int = SECTOR_SIZE):
        if not HAS_TSK:
            raise RuntimeError("pytsk3 is not installed (pip install pytsk3)")
        try:
            img = pytsk3.Img_Info(path)
        except Exception as exc:
            raise RuntimeError(f"Cannot open image {path}: {exc}") from exc
        super().__init__(sector_size, img.get_size())
        self._path = path
        self._img = img
        # Img_Info is not documented as thread-safe
        self._lock = threading.Lock()
        logger.info("TSK: opened %s, %d bytes, %d-byte sectors", path, self.size, sector_size)

    @property
    def image(self):
        return self._img

    def _read(self, offset: int, size: int) -> bytes:
        with self._lock:
            return self._img.read(offset, size)

    def close(self):
        if self._img is not None:
            self._img.close()
            self._img = None


def tsk_filesystem_name(accessor: TskImageAccessor, byte_offset: int = 0) -> Optional[str]:
    """libtsk's name for the filesystem at ``byte_offset``, or None if it sees none."""
    try:
        fs_info = pytsk3.FS_Info(accessor.image, offset=byte_offset)
    except OSError as exc:
        logger.debug("TSK: no filesystem at offset %d (%s)", byte_offset, exc)
        return None
    fs_type = fs_info.info.ftype
    name = _fs_names().get(fs_type, f"Unknown ({fs_type})")
    logger.info("TSK: filesystem type %s, block_size=%d", name, fs_info.info.block_size)
    return name


def is_available() -> bool:
    """Check if pytsk3 is installed and usable."""
    return HAS_TSK
