"""
System V family detector: Xenix, Xenix 3, System V Release 2 / 4 and
Coherent UNIX.

The 1 KiB superblock may sit at any of the first sixteen sectors (boot
code of varying length precedes it).  Each location is checked for the
magic words in turn; the byte order is whichever order makes the magic
read correctly, and Coherent, which has no magic, is recognized by the
placeholder names its mkfs writes and decoded PDP-endian.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from ..accessor import read_checked, is_optical
from ..dates import unix_to_datetime
from ..errors import MalformedStructure
from ..structs import Layout, Field, PDP, ENDIAN_NAMES, decode, decode_either, text
from .base import Detector

logger = logging.getLogger(__name__)

SUPERBLOCK_SIZE = 0x400
LOCATIONS = tuple(range(16))

XENIX_MAGIC = 0x002B5544
SYSV_MAGIC = 0xFD187E20

# Placeholder s_fname / s_fpack pairs Coherent's mkfs leaves behind
COHERENT_NAMES = (
    (b"noname", b"nopack"),
    (b"xxxxx", b"xxxxx"),
    (b"xxxxx ", b"xxxxx\n"),
)

# SVR4 clean-state token: s_state == FSOKAY - s_time
FSOKAY = 0x7C269D38
XENIX_CLEAN = 0x46

BLOCK_SIZES = {1: 512, 2: 1024, 3: 2048}

_MAGIC_WORD = Layout("SysvMagicWord", [Field("magic", 0, "u32")])


def _counters(ninode, flock, time, tfree, tinode, fname, fpack, cylblks=None,
              nfree=0x006, time_kind="u32", extra=()):
    """Field list shared by every variant: only the offsets move."""
    fields = [
        Field("isize", 0x000, "u16"),
        Field("nfree", nfree, "u16"),
        Field("ninode", ninode, "u16"),
        Field("flock", flock, "u8"),
        Field("ilock", flock + 1, "u8"),
        Field("fmod", flock + 2, "u8"),
        Field("ronly", flock + 3, "u8"),
        Field("time", time, time_kind),
        Field("tfree", tfree, "u32"),
        Field("tinode", tinode, "u16"),
        Field("fname", fname, "cstr", length=6),
        Field("fpack", fpack, "cstr", length=6),
    ]
    if cylblks is not None:
        fields += [Field("cylblks", cylblks, "u16"), Field("gapblks", cylblks + 2, "u16")]
    return fields + list(extra)


XENIX = Layout("XenixSuperBlock", _counters(
    ninode=0x198, flock=0x262, time=0x266, tfree=0x26A, tinode=0x26E,
    cylblks=0x270, fname=0x278, fpack=0x27E, time_kind="i32", extra=[
        Field("fsize", 0x002, "u32"),
        Field("clean", 0x284, "u8"),
        Field("magic", 0x3F8, "u32"),
        Field("type", 0x3FC, "u32"),
    ]), size=SUPERBLOCK_SIZE)

XENIX3 = Layout("Xenix3SuperBlock", _counters(
    ninode=0x0D0, flock=0x19A, time=0x19E, tfree=0x1A2, tinode=0x1A6,
    cylblks=0x1A8, fname=0x1B0, fpack=0x1B6, time_kind="i32", extra=[
        Field("fsize", 0x002, "u32"),
        Field("clean", 0x1BC, "u8"),
        Field("magic", 0x1F0, "u32"),
        Field("type", 0x1F4, "u32"),
    ]), size=0x200)

SVR4 = Layout("SystemVRelease4SuperBlock", _counters(
    ninode=0x0D4, flock=0x1A0, time=0x1A4, tfree=0x1B0, tinode=0x1B4,
    cylblks=0x1A8, fname=0x1B6, fpack=0x1BC, nfree=0x008, extra=[
        Field("fsize", 0x004, "u32"),
        Field("state", 0x1F4, "u32"),
        Field("magic", 0x1F8, "u32"),
        Field("type", 0x1FC, "u32"),
    ]), size=0x200)

SVR2 = Layout("SystemVRelease2SuperBlock", _counters(
    ninode=0x0D0, flock=0x19A, time=0x19E, tfree=0x1AA, tinode=0x1AE,
    cylblks=0x1A2, fname=0x1B0, fpack=0x1B6, extra=[
        Field("fsize", 0x002, "u32"),
        Field("state", 0x1F4, "u32"),
        Field("magic", 0x1F8, "u32"),
        Field("type", 0x1FC, "u32"),
    ]), size=0x200)

COHERENT = Layout("CoherentSuperBlock", _counters(
    ninode=0x108, flock=0x1D2, time=0x1D6, tfree=0x1DA, tinode=0x1DE,
    fname=0x1E4, fpack=0x1EA, extra=[
        Field("fsize", 0x002, "u32"),
        Field("int_m", 0x1E0, "u16"),
        Field("int_n", 0x1E2, "u16"),
    ]), size=0x200)


@dataclass(frozen=True)
class Located:
    """Where and how a superblock was recognized."""
    variant: str            # "xenix", "xenix3", "sysv", "coherent"
    sector: int             # Partition-relative sector
    endian: str
    offset: int = 0         # Byte offset of a SysV superblock inside the read


def _magic_order(buf: bytes, offset: int, magic: int) -> Optional[str]:
    record = decode_either(buf, _MAGIC_WORD, lambda r: r.magic == magic, offset=offset)
    return record.endian if record else None


def _classify(buf: bytes):
    """(variant, endian, offset) for one superblock-sized read, or None."""
    for magic, variant, offset in ((XENIX_MAGIC, "xenix", 0), (SYSV_MAGIC, "sysv", 0x200)):
        order = _magic_order(buf, 0x3F8, magic)
        if order:
            return variant, order, offset
    order = _magic_order(buf, 0x1F0, XENIX_MAGIC)
    if order:
        return "xenix3", order, 0
    order = _magic_order(buf, 0x1F8, SYSV_MAGIC)
    if order:
        return "sysv", order, 0

    names = (buf[0x1E4:0x1EA].split(b"\x00", 1)[0], buf[0x1EA:0x1F0].split(b"\x00", 1)[0])
    if names in COHERENT_NAMES:
        return "coherent", PDP, 0
    return None


def superblock_sectors(sector_size: int) -> int:
    return SUPERBLOCK_SIZE // sector_size if sector_size <= SUPERBLOCK_SIZE else 1


class SysvDetector(Detector):
    format_id = "sysv"
    name = "UNIX System V filesystem"
    type_tag = "sysv"
    encoding = "iso-8859-1"

    def _locate(self, accessor, partition) -> Optional[Located]:
        sbs = superblock_sectors(accessor.sector_size)
        if partition.end <= partition.start + 5 * sbs:
            return None
        for i in LOCATIONS:
            if i + partition.start + sbs >= accessor.total_sectors:
                break
            if i + sbs > partition.length:
                break
            buf = read_checked(accessor, partition, i, sbs)
            if len(buf) < SUPERBLOCK_SIZE:
                continue
            found = _classify(buf)
            if found:
                variant, endian, offset = found
                logger.debug("SysV: %s superblock at sector %d, %s",
                             variant, i, ENDIAN_NAMES[endian])
                return Located(variant, i, endian, offset)
        return None

    def _identify(self, accessor, partition) -> bool:
        if 2 + partition.start >= partition.end:
            return False
        return self._locate(accessor, partition) is not None

    def _extract(self, accessor, partition, draft, report, encoding):
        where = self._locate(accessor, partition)
        if where is None:
            raise MalformedStructure("superblock no longer found")
        buf = read_checked(accessor, partition, where.sector,
                           superblock_sectors(accessor.sector_size))

        if where.variant in ("xenix", "xenix3"):
            sb = decode(buf, XENIX if where.variant == "xenix" else XENIX3, where.endian)
            draft.type = "xenixfs"
            report.add("XENIX filesystem")
            bs = self._block_size(sb.type, report)
            draft.dirty = sb.clean != XENIX_CLEAN
        elif where.variant == "sysv":
            probe = decode(buf, SVR2, where.endian, where.offset)
            bs = BLOCK_SIZES.get(probe.type, 512)
            r4 = probe.fsize * bs <= 0 or probe.fsize * bs != partition.size(accessor.sector_size)
            sb = decode(buf, SVR4 if r4 else SVR2, where.endian, where.offset)
            draft.type = "sysv_r4" if r4 else "sysv_r2"
            report.add("System V Release 4 filesystem" if r4 else "System V Release 2 filesystem")
            bs = self._block_size(sb.type, report)
            draft.dirty = sb.state != (FSOKAY - sb.time) & 0xFFFFFFFF
        else:
            sb = decode(buf, COHERENT, PDP)
            draft.type = "coherent"
            report.add("Coherent UNIX filesystem")
            bs = 512
            if accessor.sector_size != 512:
                report.add(f"WARNING: Filesystem indicates 512 bytes/block while device "
                           f"indicates {accessor.sector_size} bytes/sector")

        if where.variant != "coherent":
            device_ss = 2048 if is_optical(accessor.sector_size) else accessor.sector_size
            if bs != device_ss:
                report.add(f"WARNING: Filesystem indicates {bs} bytes/block while device "
                           f"indicates {device_ss} bytes/sector")

        draft.cluster_size = bs
        draft.clusters = sb.fsize
        draft.free_clusters = sb.tfree
        draft.volume_name = text(sb.fname, encoding)
        if sb.time:
            draft.modification_date = unix_to_datetime(sb.time)

        report.add(f"Superblock at sector {where.sector}, {ENDIAN_NAMES[where.endian]}")
        report.add(f"{sb.fsize} zones on volume ({sb.fsize * bs} bytes)")
        report.add(f"{sb.tfree} free zones on volume ({sb.tfree * bs} bytes)")
        report.add(f"{sb.nfree} free blocks on list ({sb.nfree * bs} bytes)")
        if where.variant == "coherent":
            report.add(f"Interleave: {sb.int_m}:{sb.int_n}")
        else:
            report.add(f"{sb.cylblks} blocks per cylinder ({sb.cylblks * bs} bytes)")
            report.add(f"{sb.gapblks} blocks per gap ({sb.gapblks * bs} bytes)")
        report.add(f"First data zone: {sb.isize}")
        report.add(f"{sb.tinode} free inodes on volume")
        report.add(f"{sb.ninode} free inodes on list")
        if sb.flock:
            report.add("Free block list is locked")
        if sb.ilock:
            report.add("inode cache is locked")
        if sb.fmod:
            report.add("Superblock is being modified")
        if sb.ronly:
            report.add("Volume is mounted read-only")
        if draft.modification_date:
            report.add(f"Superblock last updated on {draft.modification_date}")
        report.add(f"Volume name: {draft.volume_name}")
        report.add(f"Pack name: {text(sb.fpack, encoding)}")
        if where.variant != "coherent":
            report.add("Volume is dirty" if draft.dirty else "Volume is clean")

    @staticmethod
    def _block_size(s_type: int, report) -> int:
        if s_type in BLOCK_SIZES:
            report.add(f"{BLOCK_SIZES[s_type]} bytes per block")
            return BLOCK_SIZES[s_type]
        report.add(f"Unknown s_type value: 0x{s_type:X}")
        return 512
