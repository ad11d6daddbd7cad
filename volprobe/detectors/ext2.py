"""
Linux ext2 / ext3 / ext4 detector, described as data.

Superblock at byte 0x400 of the partition, little-endian, magic at
0x38.  Journal and extent feature bits decide which generation the
volume is; 64-bit volumes keep the high halves of their block counters
in a separate part of the superblock.
"""

import uuid

from ..dates import unix_to_datetime
from ..structs import Layout, Field, Split64, LITTLE, text
from .base import LayoutDetector

SUPERBLOCK_OFFSET = 0x400

EXT2_MAGIC = 0xEF53
EXT2_MAGIC_OLD = 0xEF51

STATE_CLEAN = 0x0001

# Feature bits
COMPAT_HAS_JOURNAL = 0x0004
INCOMPAT_RECOVER = 0x0004
INCOMPAT_JOURNAL_DEV = 0x0008
INCOMPAT_EXTENTS = 0x0040
INCOMPAT_64BIT = 0x0080
INCOMPAT_MMP = 0x0100
INCOMPAT_FLEX_BG = 0x0200
INCOMPAT_EA_INODE = 0x0400
INCOMPAT_DIRDATA = 0x1000
RO_COMPAT_HUGE_FILE = 0x0008
RO_COMPAT_GDT_CSUM = 0x0010
RO_COMPAT_DIR_NLINK = 0x0020
RO_COMPAT_EXTRA_ISIZE = 0x0040

EXT3_INCOMPAT = INCOMPAT_RECOVER | INCOMPAT_JOURNAL_DEV
EXT4_INCOMPAT = INCOMPAT_64BIT | INCOMPAT_MMP | INCOMPAT_FLEX_BG | INCOMPAT_EA_INODE | INCOMPAT_DIRDATA
EXT4_RO_COMPAT = RO_COMPAT_HUGE_FILE | RO_COMPAT_GDT_CSUM | RO_COMPAT_DIR_NLINK | RO_COMPAT_EXTRA_ISIZE

CREATOR_OS = {0: "Linux", 1: "Hurd", 2: "MasIX", 3: "FreeBSD", 4: "Lites"}

ERROR_BEHAVIOUR = {1: "continue", 2: "remount read-only", 3: "panic"}

SUPERBLOCK = Layout("Ext2Superblock", [
    Field("inodes", 0x000, "u32"),
    Field("blocks", 0x004, "u32"),
    Field("reserved_blocks", 0x008, "u32"),
    Field("free_blocks", 0x00C, "u32"),
    Field("free_inodes", 0x010, "u32"),
    Field("first_data_block", 0x014, "u32"),
    Field("log_block_size", 0x018, "u32"),
    Field("blocks_per_group", 0x020, "u32"),
    Field("inodes_per_group", 0x028, "u32"),
    Field("mount_t", 0x02C, "u32"),
    Field("write_t", 0x030, "u32"),
    Field("mount_c", 0x034, "u16"),
    Field("max_mount_c", 0x036, "i16"),
    Field("magic", 0x038, "u16"),
    Field("state", 0x03A, "u16"),
    Field("err_behaviour", 0x03C, "u16"),
    Field("minor_revision", 0x03E, "u16"),
    Field("check_t", 0x040, "u32"),
    Field("check_inv", 0x044, "u32"),
    Field("creator_os", 0x048, "u32"),
    Field("revision", 0x04C, "u32"),
    Field("ftr_compat", 0x05C, "u32"),
    Field("ftr_incompat", 0x060, "u32"),
    Field("ftr_ro_compat", 0x064, "u32"),
    Field("uuid", 0x068, "ident"),
    Field("volume_name", 0x078, "cstr", length=16),
    Field("last_mount_dir", 0x088, "cstr", length=64),
    Field("mkfs_t", 0x108, "u32"),
    Field("blocks_hi", 0x150, "u32"),
    Field("reserved_blocks_hi", 0x154, "u32"),
    Field("free_blocks_hi", 0x158, "u32"),
], derived=[
    Split64("blocks_64", "blocks_hi", "blocks"),
    Split64("reserved_blocks_64", "reserved_blocks_hi", "reserved_blocks"),
    Split64("free_blocks_64", "free_blocks_hi", "free_blocks"),
])


def _magic(sb) -> bool:
    return sb.magic in (EXT2_MAGIC, EXT2_MAGIC_OLD)


def _sane(sb) -> bool:
    # Block size 1 KiB .. 64 KiB
    return sb.log_block_size <= 6


def _block_size(sb) -> int:
    return 1024 << sb.log_block_size


def _is_64bit(sb) -> bool:
    return bool(sb.ftr_incompat & INCOMPAT_64BIT)


def _block_count(sb) -> int:
    return sb.blocks_64 if _is_64bit(sb) else sb.blocks


def _extent(sb) -> int:
    return _block_count(sb) * _block_size(sb)


def generation(sb) -> str:
    """"ext2", "ext3" or "ext4" from the feature bits."""
    if sb.magic == EXT2_MAGIC_OLD:
        return "ext2"
    if sb.ftr_ro_compat & EXT4_RO_COMPAT or sb.ftr_incompat & EXT4_INCOMPAT:
        return "ext4"
    if sb.ftr_compat & COMPAT_HAS_JOURNAL or sb.ftr_incompat & EXT3_INCOMPAT:
        return "ext3"
    return "ext2"


def _when(seconds: int):
    return unix_to_datetime(seconds) if seconds > 0 else None


def _map(sb, draft, report, encoding, media):
    gen = generation(sb)
    is64 = _is_64bit(sb)
    free = sb.free_blocks_64 if is64 else sb.free_blocks
    reserved = sb.reserved_blocks_64 if is64 else sb.reserved_blocks
    os_name = CREATOR_OS.get(sb.creator_os, f"unknown OS {sb.creator_os}")

    draft.type = gen
    draft.cluster_size = _block_size(sb)
    draft.clusters = _block_count(sb)
    draft.free_clusters = free
    draft.volume_name = text(sb.volume_name, encoding)
    draft.system_identifier = os_name
    draft.dirty = sb.state != STATE_CLEAN
    draft.creation_date = _when(sb.mkfs_t)
    draft.modification_date = _when(sb.write_t)
    if any(sb.uuid):
        draft.volume_serial = str(uuid.UUID(bytes=bytes(sb.uuid)))

    if sb.magic == EXT2_MAGIC_OLD:
        report.add("ext2 (old) filesystem")
    else:
        report.add(f"{gen} filesystem")
    report.add(f"Volume was created on {os_name}")
    if draft.creation_date:
        report.add(f"Volume was created on {draft.creation_date}")
    if draft.volume_name:
        report.add(f"Volume name: \"{draft.volume_name}\"")
    report.add(f"Volume has {draft.clusters} blocks of {draft.cluster_size} bytes, "
               f"for a total of {draft.clusters * draft.cluster_size} bytes")
    report.add(f"{free} free blocks, {reserved} reserved blocks")
    report.add(f"{sb.inodes} inodes, {sb.free_inodes} free")
    report.add(f"{sb.blocks_per_group} blocks and {sb.inodes_per_group} inodes per group")
    report.add(f"First data block is {sb.first_data_block}")
    if draft.modification_date:
        report.add(f"Last written on {draft.modification_date}")
    if sb.mount_t:
        report.add(f"Last mounted on {_when(sb.mount_t)}")
        if sb.max_mount_c >= 0:
            report.add(f"Volume has been mounted {sb.mount_c} times of a maximum of {sb.max_mount_c} mounts")
        else:
            report.add(f"Volume has been mounted {sb.mount_c} times with no maximum")
    if sb.last_mount_dir:
        report.add(f"Last mounted at: \"{text(sb.last_mount_dir, encoding)}\"")
    if sb.check_t:
        report.add(f"Last checked on {_when(sb.check_t)} (should check every {sb.check_inv} seconds)")
    report.add("Volume is clean" if not draft.dirty else "Volume is dirty")
    if sb.err_behaviour in ERROR_BEHAVIOUR:
        report.add(f"On errors, filesystem should {ERROR_BEHAVIOUR[sb.err_behaviour]}")
    report.add(f"Filesystem revision: {sb.revision}.{sb.minor_revision}")
    if draft.volume_serial:
        report.add(f"Volume UUID: {draft.volume_serial}")
    if sb.ftr_compat & COMPAT_HAS_JOURNAL:
        report.add("Has journal")
    if sb.ftr_incompat & INCOMPAT_EXTENTS:
        report.add("Has extents")
    if is64:
        report.add("Uses 64-bit block numbers")
    if draft.clusters * draft.cluster_size < media.partition_bytes:
        report.add(f"Partition has {media.partition_bytes} bytes, volume uses less")


def ext2_detector() -> LayoutDetector:
    return LayoutDetector(
        format_id="ext2",
        name="Linux extended Filesystem 2, 3 and 4",
        layout=SUPERBLOCK,
        byte_offset=SUPERBLOCK_OFFSET,
        magic=_magic,
        sanity=_sane,
        extent=_extent,
        mapper=_map,
        orders=(LITTLE,),
        type_tag="ext2",
        encoding="iso-8859-1",
    )
