"""
Apple ProDOS detector.

Blocks 0 and 1 hold boot code; block 2 is the key block of the volume
directory, whose header entry identifies the volume.  ProDOS blocks are
512 bytes and are read by byte offset whatever the sector size;
optical media may carry a 512-byte-block volume inside each 2048-byte
sector (found with the sub-offset probe).
"""

import logging

from ..accessor import read_bytes, probe_sub_offsets, is_optical
from ..dates import prodos_to_datetime
from ..errors import MalformedStructure
from ..structs import Layout, Field, LITTLE, decode, text
from .base import Detector

logger = logging.getLogger(__name__)

BLOCK_SIZE = 512
ROOT_KEY_BLOCK = 2

ROOT_DIRECTORY_TYPE = 0x0F
STORAGE_TYPE_MASK = 0xF0
NAME_LENGTH_MASK = 0x0F
ENTRY_LENGTH = 0x27
ENTRIES_PER_BLOCK = 0x0D

VOLUME_HEADER = Layout("ProdosVolumeDirectoryHeader", [
    Field("prev_pointer", 0x00, "u16"),
    Field("next_pointer", 0x02, "u16"),
    Field("storage_name_len", 0x04, "u8"),
    Field("name", 0x05, "raw", length=15),
    Field("reserved", 0x14, "raw", length=8),
    Field("creation_date", 0x1C, "u16"),
    Field("creation_time", 0x1E, "u16"),
    Field("version", 0x20, "u8"),
    Field("min_version", 0x21, "u8"),
    Field("access", 0x22, "u8"),
    Field("entry_length", 0x23, "u8"),
    Field("entries_per_block", 0x24, "u8"),
    Field("file_count", 0x25, "u16"),
    Field("bit_map_pointer", 0x27, "u16"),
    Field("total_blocks", 0x29, "u16"),
])

# Access flags (bit → meaning)
ACCESS_FLAGS = (
    (0x80, "destroyed"),
    (0x40, "renamed"),
    (0x20, "backed up"),
    (0x02, "written"),
    (0x01, "read"),
)


def _header_ok(header) -> bool:
    return (header.prev_pointer == 0
            and (header.storage_name_len & STORAGE_TYPE_MASK) >> 4 == ROOT_DIRECTORY_TYPE
            and header.entry_length == ENTRY_LENGTH
            and header.entries_per_block == ENTRIES_PER_BLOCK)


def _looks_like_root(block: bytes) -> bool:
    return _header_ok(decode(block, VOLUME_HEADER, LITTLE))


class ProdosDetector(Detector):
    format_id = "prodos"
    name = "Apple ProDOS filesystem"
    type_tag = "ProDOS"
    encoding = "ascii"

    def _root_block(self, accessor, partition):
        """(header, total blocks, header was found inside an optical sector)."""
        ss = accessor.sector_size
        block = read_bytes(accessor, partition, ROOT_KEY_BLOCK * BLOCK_SIZE, BLOCK_SIZE)

        from_optical = False
        if is_optical(ss):
            hit = probe_sub_offsets(accessor, partition, 0, BLOCK_SIZE, _looks_like_root)
            if hit is not None:
                block = hit[1]
                from_optical = True

        header = decode(block, VOLUME_HEADER, LITTLE)
        total_blocks = header.total_blocks // 4 if from_optical else header.total_blocks
        return header, total_blocks, from_optical

    def _identify(self, accessor, partition) -> bool:
        if partition.size(accessor.sector_size) < (ROOT_KEY_BLOCK + 1) * BLOCK_SIZE:
            return False
        header, _, _ = self._root_block(accessor, partition)
        logger.debug("ProDOS prev=%d storage=%d entry_length=%d entries_per_block=%d",
                     header.prev_pointer, header.storage_name_len >> 4,
                     header.entry_length, header.entries_per_block)
        if not _header_ok(header):
            return False
        available = partition.size(accessor.sector_size)
        if header.bit_map_pointer * BLOCK_SIZE >= available:
            return False
        return header.total_blocks * BLOCK_SIZE <= available

    def _extract(self, accessor, partition, draft, report, encoding):
        header, total_blocks, from_optical = self._root_block(accessor, partition)
        if not _header_ok(header):
            raise MalformedStructure("volume directory header lost")

        name_len = header.storage_name_len & NAME_LENGTH_MASK
        draft.type = "ProDOS"
        draft.volume_name = text(header.name[:name_len], encoding)
        draft.files = header.file_count
        draft.clusters = total_blocks
        if total_blocks:
            draft.cluster_size = partition.size(accessor.sector_size) // total_blocks
        draft.creation_date = prodos_to_datetime(header.creation_date, header.creation_time)

        if header.version != 0 or header.min_version != 0:
            report.warn(f"unknown ProDOS version {header.version} (minimum {header.min_version}), "
                        "information may be incorrect")
        if from_optical:
            report.add("ProDOS uses 512 bytes/sector while the device uses 2048 bytes/sector.")
        report.add(f"Volume name is {draft.volume_name}")
        if draft.creation_date:
            report.add(f"Volume created on {draft.creation_date}")
        report.add(f"{header.file_count} files in volume")
        report.add(f"{total_blocks} blocks in volume")
        report.add(f"Bitmap starts at block {header.bit_map_pointer}")

        for bit, meaning in ACCESS_FLAGS:
            if header.access & bit:
                report.add(f"Volume can be {meaning}")
        if header.access & 0x1C:
            report.add("Reserved attributes are set")
