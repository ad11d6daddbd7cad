"""
BSD Fast File System (UFS1 / UFS2 / BorderWare UFS) detector.

The 8 KiB superblock is searched at the handful of sector offsets the
various BSDs, SunOS and System V ports put it at.  The byte order is
taken from whichever order reads one of the known magic numbers at
0x55C; a superblock whose magic says "incompletely initialized" is
still claimed but its report carries a warning.
"""

import logging
from typing import Optional

from ..accessor import read_checked, is_optical
from ..dates import unix_to_datetime
from ..errors import MalformedStructure, OutOfRange
from ..structs import Layout, Field, LITTLE, BIG, ENDIAN_NAMES, decode_either, text
from .base import Detector

logger = logging.getLogger(__name__)

BLOCK_SIZE = 8192

# Fixed superblock candidates, in sectors
SB_START_FLOPPY = 0
SB_START_BOOT = 1
SB_START_LONG_BOOT = 8
SB_START_PIGGY = 32
SB_START_ATT_DSDD = 14

UFS_MAGIC = 0x00011954
UFS_MAGIC_BW = 0x0F242697
UFS2_MAGIC = 0x19540119
UFS_BAD_MAGIC = 0x19960408

MAGIC_NAMES = {
    UFS_MAGIC: "UFS filesystem",
    UFS_MAGIC_BW: "BorderWare UFS filesystem",
    UFS2_MAGIC: "UFS2 filesystem",
    UFS_BAD_MAGIC: "Incompletely initialized UFS filesystem",
}

SUPERBLOCK = Layout("UfsSuperBlock", [
    Field("fs_link", 0x000, "i32"),
    Field("fs_sblkno", 0x008, "i32"),
    Field("fs_cblkno", 0x00C, "i32"),
    Field("fs_iblkno", 0x010, "i32"),
    Field("fs_dblkno", 0x014, "i32"),
    Field("fs_old_cgoffset", 0x018, "i32"),
    Field("fs_old_time", 0x020, "i32"),
    Field("fs_old_size", 0x024, "i32"),
    Field("fs_old_dsize", 0x028, "i32"),
    Field("fs_ncg", 0x02C, "u32"),
    Field("fs_bsize", 0x030, "i32"),
    Field("fs_fsize", 0x034, "i32"),
    Field("fs_frag", 0x038, "i32"),
    Field("fs_minfree", 0x03C, "i32"),
    Field("fs_old_rotdelay", 0x040, "i32"),
    Field("fs_old_rps", 0x044, "i32"),
    Field("fs_old_npsect", 0x084, "i32"),
    Field("fs_id_1", 0x090, "i32"),
    Field("fs_id_2", 0x094, "i32"),
    Field("fs_ipg", 0x0B8, "u32"),
    Field("fs_fpg", 0x0BC, "i32"),
    Field("fs_old_ndir", 0x0C0, "i32"),
    Field("fs_old_nbfree", 0x0C4, "i32"),
    Field("fs_old_nifree", 0x0C8, "i32"),
    Field("fs_old_nffree", 0x0CC, "i32"),
    Field("fs_fmod", 0x0D0, "u8"),
    Field("fs_clean", 0x0D1, "u8"),
    Field("fs_ronly", 0x0D2, "u8"),
    Field("fs_flags", 0x0D3, "u8"),
    Field("fs_fsmnt", 0x0D4, "cstr", length=468),
    Field("fs_volname", 0x2A8, "cstr", length=32),
    Field("fs_swuid", 0x2C8, "u64"),
    Field("fs_cgrotor", 0x2D4, "i32"),
    Field("fs_ndir", 0x3F0, "i64"),
    Field("fs_nbfree", 0x3F8, "i64"),
    Field("fs_nifree", 0x400, "i64"),
    Field("fs_nffree", 0x408, "i64"),
    Field("fs_numclusters", 0x410, "i64"),
    Field("fs_time", 0x430, "i64"),
    Field("fs_size", 0x438, "i64"),
    Field("fs_dsize", 0x440, "i64"),
    Field("fs_magic", 0x55C, "u32"),
])


def superblock_sectors(sector_size: int) -> int:
    if is_optical(sector_size):
        return BLOCK_SIZE // 2048
    return max(1, BLOCK_SIZE // sector_size)


def superblock_locations(sector_size: int) -> tuple[int, ...]:
    return (
        SB_START_FLOPPY, SB_START_BOOT, SB_START_LONG_BOOT, SB_START_PIGGY, SB_START_ATT_DSDD,
        8192 // sector_size, 65536 // sector_size, 262144 // sector_size,
    )


def _known_magic(sb) -> bool:
    return sb.fs_magic in MAGIC_NAMES


class UfsDetector(Detector):
    format_id = "ufs"
    name = "BSD Fast File System (aka UNIX File System, UFS)"
    type_tag = "UFS"
    encoding = "iso-8859-1"

    def _find(self, accessor, partition) -> Optional[tuple[int, tuple]]:
        ss = accessor.sector_size
        sbs = superblock_sectors(ss)
        for loc in superblock_locations(ss):
            if not partition.end > partition.start + loc + sbs:
                continue
            try:
                data = read_checked(accessor, partition, loc, sbs)
            except OutOfRange:
                continue
            if len(data) < SUPERBLOCK.size:
                continue
            sb = decode_either(data, SUPERBLOCK, _known_magic, orders=(LITTLE, BIG))
            if sb is not None:
                logger.debug("UFS superblock at sector %d, %s", loc, ENDIAN_NAMES[sb.endian])
                return loc, sb
        return None

    def _identify(self, accessor, partition) -> bool:
        if 2 + partition.start >= partition.end:
            return False
        return self._find(accessor, partition) is not None

    def _extract(self, accessor, partition, draft, report, encoding):
        found = self._find(accessor, partition)
        if found is None:
            raise MalformedStructure("superblock no longer found")
        loc, sb = found
        ufs2 = sb.fs_magic == UFS2_MAGIC

        prefix = "Big-endian " if sb.endian == BIG else ""
        report.add(prefix + MAGIC_NAMES[sb.fs_magic])
        if sb.fs_magic == UFS_BAD_MAGIC:
            report.warn("superblock is incompletely initialized, following information may be completely wrong")

        draft.type = "UFS2" if ufs2 else "UFS"
        draft.cluster_size = sb.fs_fsize
        draft.dirty = sb.fs_fmod == 1
        if ufs2:
            draft.clusters = sb.fs_size
            draft.free_clusters = sb.fs_nbfree
            draft.modification_date = unix_to_datetime(sb.fs_time) if sb.fs_time > 0 else None
            draft.volume_name = text(sb.fs_volname, encoding)
        else:
            draft.clusters = sb.fs_old_size
            draft.free_clusters = sb.fs_old_nbfree
            draft.modification_date = unix_to_datetime(sb.fs_old_time) if sb.fs_old_time > 0 else None
            # UFS1 variants reuse the same fields; only UFS2 is unambiguous
            report.add(f"Guessed as {self._guess(sb)}")

        report.add(f"Superblock found at sector {loc} of the partition")
        report.add(f"Superblock LBA: {sb.fs_sblkno}")
        report.add(f"Cylinder-block LBA: {sb.fs_cblkno}")
        report.add(f"inode-block LBA: {sb.fs_iblkno}")
        report.add(f"First data block LBA: {sb.fs_dblkno}")
        if draft.modification_date:
            report.add(f"Volume last written on {draft.modification_date}")
        report.add(f"{draft.clusters} blocks in volume ({draft.clusters * draft.cluster_size} bytes)")
        report.add(f"{sb.fs_ncg} cylinder groups in volume")
        report.add(f"{sb.fs_bsize} bytes in a basic block")
        report.add(f"{sb.fs_fsize} bytes in a frag block")
        report.add(f"{sb.fs_frag} frags in a block")
        report.add(f"{sb.fs_minfree}% of blocks must be free")
        report.add(f"{sb.fs_ipg} inodes per cylinder group")
        report.add(f"{sb.fs_fpg} blocks per cylinder group")
        if ufs2:
            report.add(f"{sb.fs_ndir} directories")
            report.add(f"{sb.fs_nbfree} free blocks ({sb.fs_nbfree * sb.fs_bsize} bytes)")
            report.add(f"{sb.fs_nifree} free inodes")
            report.add(f"{sb.fs_nffree} free frags")
            report.add(f"{sb.fs_numclusters} free clusters")
        else:
            report.add(f"{sb.fs_old_ndir} directories")
            report.add(f"{sb.fs_old_nbfree} free blocks ({sb.fs_old_nbfree * sb.fs_bsize} bytes)")
            report.add(f"{sb.fs_old_nifree} free inodes")
            report.add(f"{sb.fs_old_nffree} free frags")
        if sb.fs_fmod == 1:
            report.add("Superblock is under modification")
        if sb.fs_clean == 1:
            report.add("Volume is clean")
        if sb.fs_ronly == 1:
            report.add("Volume is read-only")
        report.add(f"Volume flags: 0x{sb.fs_flags:02X}")
        if sb.fs_fsmnt:
            report.add(f"Volume last mounted on \"{text(sb.fs_fsmnt, encoding)}\"")
        if draft.volume_name:
            report.add(f"Volume name: \"{draft.volume_name}\"")
        if ufs2 and sb.fs_swuid:
            draft.volume_serial = f"{sb.fs_swuid:016X}"
            report.add(f"Volume ID: 0x{sb.fs_swuid:016X}")

    @staticmethod
    def _guess(sb) -> str:
        if 0 < sb.fs_cgrotor:
            return "UFS"
        if sb.fs_link > 0:
            return "4.2BSD FFS"
        if sb.fs_id_1 == 0 and sb.fs_id_2 == 0:
            return "4.3BSD FFS"
        return "4.4BSD FFS"
