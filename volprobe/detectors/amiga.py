"""
AmigaDOS (OFS / FFS / MuFS) detector.

Bootblock at the partition start carries the DOS type and a pointer to
the root block; the root block is found either through that pointer
(when the bootblock checksum holds) or by probing the middle of the
partition, where the formatter normally places it.
"""

import logging

from ..accessor import read_checked, sectors_for
from ..checksums import amiga_boot_checksum, amiga_block_checksum, zeroed
from ..dates import amiga_to_datetime
from ..errors import OutOfRange, MalformedStructure
from ..structs import Layout, Field, BIG, decode, text
from .base import Detector

logger = logging.getLogger(__name__)

FFS_MASK = 0x444F5300       # "DOS\0"
MUFS_MASK = 0x6D754600      # "muF\0"

TYPE_HEADER = 2
SUBTYPE_ROOT = 1

# Root block tail sits at (block end - 200) whatever the block size
ROOT_TAIL = 200

BOOT_BLOCK = Layout("AmigaBootBlock", [
    Field("disk_type", 0x00, "u32"),
    Field("checksum", 0x04, "u32"),
    Field("root_ptr", 0x08, "u32"),
])

ROOT_HEAD = Layout("AmigaRootHead", [
    Field("type", 0x00, "u32"),
    Field("header_key", 0x04, "u32"),
    Field("high_seq", 0x08, "u32"),
    Field("hash_table_size", 0x0C, "u32"),
    Field("first_data", 0x10, "u32"),
    Field("checksum", 0x14, "u32"),
])

ROOT_TAIL_LAYOUT = Layout("AmigaRootTail", [
    Field("bitmap_flag", 0, "u32"),
    Field("bitmap_pages", 4, "u32", count=25),
    Field("bitmap_ext", 104, "u32"),
    Field("r_days", 108, "u32"),
    Field("r_mins", 112, "u32"),
    Field("r_ticks", 116, "u32"),
    Field("disk_name", 120, "pstr", length=32),
    Field("v_days", 160, "u32"),
    Field("v_mins", 164, "u32"),
    Field("v_ticks", 168, "u32"),
    Field("c_days", 172, "u32"),
    Field("c_mins", 176, "u32"),
    Field("c_ticks", 180, "u32"),
    Field("next_hash", 184, "u32"),
    Field("parent", 188, "u32"),
    Field("extension", 192, "u32"),
    Field("sec_type", 196, "u32"),
], size=ROOT_TAIL)

_FLAVOURS = {
    0: ("aofs", "Amiga Original File System"),
    1: ("affs", "Amiga Fast File System"),
    2: ("aofs", "Amiga Original File System with international characters"),
    3: ("affs", "Amiga Fast File System with international characters"),
    4: ("aofs", "Amiga Original File System with directory cache"),
    5: ("affs", "Amiga Fast File System with directory cache"),
    6: ("aofs2", "Amiga Original File System with long filenames"),
    7: ("affs2", "Amiga Fast File System with long filenames"),
}


def _is_dos(disk_type: int) -> bool:
    return (disk_type & FFS_MASK) == FFS_MASK or (disk_type & MUFS_MASK) == MUFS_MASK


class AmigaDetector(Detector):
    format_id = "amigados"
    name = "Amiga DOS filesystem"
    type_tag = "Amiga filesystem"
    encoding = "iso-8859-1"

    def _boot_block(self, accessor, partition):
        """(raw, record, checksum_ok) for the bootblock, AROS floppies included."""
        raw = read_checked(accessor, partition, 0, 2)
        boot = decode(raw, BOOT_BLOCK, BIG)

        # AROS boot floppies put a PC boot sector first
        if len(raw) >= 512 and raw[510:512] == b"\x55\xAA" and not _is_dos(boot.disk_type):
            raw = read_checked(accessor, partition, 1, 2)
            boot = decode(raw, BOOT_BLOCK, BIG)

        if not _is_dos(boot.disk_type):
            return raw, None, False
        computed = amiga_boot_checksum(zeroed(raw, 4))
        logger.debug("AmigaDOS bootblock checksum stored 0x%08X computed 0x%08X",
                     boot.checksum, computed)
        return raw, boot, computed == boot.checksum

    def _root_candidates(self, partition, boot, boot_ok):
        half = partition.length // 2 + partition.start
        root_ptr = boot.root_ptr + partition.start if boot_ok else partition.start
        candidates = [root_ptr, half - 2, half - 1, half, half + 4]
        return [p for p in candidates if partition.start <= p < partition.end]

    def _find_root(self, accessor, partition, boot, boot_ok):
        """(absolute LBA, block bytes, head, computed checksum) or None."""
        ss = accessor.sector_size
        for lba in self._root_candidates(partition, boot, boot_ok):
            rel = lba - partition.start
            try:
                head = decode(read_checked(accessor, partition, rel, 1), ROOT_HEAD, BIG)
            except (OutOfRange, MalformedStructure):
                continue
            if head.type != TYPE_HEADER:
                continue

            block_size = (head.hash_table_size + 56) * 4
            per_block = sectors_for(block_size, ss)
            if lba + per_block >= partition.end:
                continue
            try:
                block = read_checked(accessor, partition, rel, per_block)
            except OutOfRange:
                continue

            computed = amiga_block_checksum(zeroed(block, 20))
            sec_type = int.from_bytes(block[-4:], "big")
            logger.debug("AmigaDOS root candidate %d: checksum 0x%08X/0x%08X sec_type %d",
                         lba, head.checksum, computed, sec_type)
            if sec_type == SUBTYPE_ROOT and head.checksum == computed:
                return lba, block, head
        return None

    def _identify(self, accessor, partition) -> bool:
        if partition.start + 4 >= partition.end:
            return False
        _, boot, boot_ok = self._boot_block(accessor, partition)
        if boot is None:
            return False
        return self._find_root(accessor, partition, boot, boot_ok) is not None

    def _extract(self, accessor, partition, draft, report, encoding):
        _, boot, boot_ok = self._boot_block(accessor, partition)
        if boot is None:
            raise MalformedStructure("bootblock lost its DOS type")

        flavour, description = _FLAVOURS.get(boot.disk_type & 0xFF, ("amiga", "Amiga filesystem"))
        draft.type = flavour
        draft.bootable = boot_ok
        report.add(f"{description}")
        if (boot.disk_type & MUFS_MASK) == MUFS_MASK:
            report.add("with multi-user patches")
        if boot_ok:
            report.add(f"Bootblock points to block {boot.root_ptr} as root")

        found = self._find_root(accessor, partition, boot, boot_ok)
        if found is None:
            raise MalformedStructure("root block not found")
        lba, block, head = found
        tail = decode(block, ROOT_TAIL_LAYOUT, BIG, offset=len(block) - ROOT_TAIL)

        block_size = (head.hash_table_size + 56) * 4
        draft.cluster_size = block_size
        draft.clusters = partition.size(accessor.sector_size) // block_size
        draft.volume_name = text(tail.disk_name, encoding)
        draft.volume_serial = f"{head.checksum:08X}"
        draft.dirty = tail.bitmap_flag != 0xFFFFFFFF
        draft.creation_date = amiga_to_datetime(tail.c_days, tail.c_mins, tail.c_ticks)
        draft.modification_date = amiga_to_datetime(tail.v_days, tail.v_mins, tail.v_ticks)

        report.add(f"Root block at LBA {lba}, {block_size} bytes per block")
        report.add(f'Volume name: "{draft.volume_name}"')
        report.add(f"Volume has {draft.clusters} blocks")
        if draft.creation_date:
            report.add(f"Volume created on {draft.creation_date}")
        if draft.modification_date:
            report.add(f"Volume last modified on {draft.modification_date}")
        root_date = amiga_to_datetime(tail.r_days, tail.r_mins, tail.r_ticks)
        if root_date:
            report.add(f"Root directory last modified on {root_date}")
        report.add("Volume is dirty" if draft.dirty else "Volume bitmap is valid")
        report.add(f"Root block checksum is 0x{head.checksum:08X}")
