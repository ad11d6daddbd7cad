"""
Per-format detector tests.

Every image here is synthetic: a zero-filled bytearray with just the
on-disk structures a detector looks at, packed with struct.pack_into
and served through MemoryAccessor.  The build_* helpers are shared
with test_registry.py.
"""
import struct
import uuid
from datetime import datetime

from volprobe.accessor import MemoryAccessor, Partition
from volprobe.dates import amiga_to_datetime
from volprobe.checksums import (
    zeroed, amiga_boot_checksum, amiga_block_checksum, acorn_boot_checksum,
    acorn_new_map_checksum, acorn_old_map_checksum,
)
from volprobe.descriptor import VolumeDescriptor
from volprobe.detectors import (
    LayoutDetector, AmigaDetector, AcornDetector, HfsDetector, HfsPlusDetector,
    ProdosDetector, ext2_detector, SysvDetector, UfsDetector, Iso9660Detector,
    FatDetector,
)
from volprobe.structs import Layout, Field, LITTLE, BIG, text


def _acc(image, sector_size=512):
    acc = MemoryAccessor(bytes(image), sector_size)
    return acc, Partition.whole(acc)


# ─────────────────────────────────────────────────────────────
#  Image builders
# ─────────────────────────────────────────────────────────────

def build_amiga(name=b"Workbench", flavour=1, total=64, good_boot=True):
    img = bytearray(512 * total)
    root = total // 2
    struct.pack_into(">II", img, 0, 0x444F5300 | flavour, 0)
    struct.pack_into(">I", img, 8, root)
    chk = amiga_boot_checksum(zeroed(bytes(img[:1024]), 4))
    struct.pack_into(">I", img, 4, chk if good_boot else chk ^ 1)

    block = bytearray(512)
    struct.pack_into(">I", block, 0x00, 2)
    struct.pack_into(">I", block, 0x0C, 72)         # (72 + 56) * 4 = 512-byte blocks
    tail = 512 - 200
    struct.pack_into(">I", block, tail, 0xFFFFFFFF)
    block[tail + 120] = len(name)
    block[tail + 121:tail + 121 + len(name)] = name
    struct.pack_into(">III", block, tail + 160, 8001, 60, 50)
    struct.pack_into(">III", block, tail + 172, 8000, 600, 0)
    struct.pack_into(">I", block, 508, 1)
    struct.pack_into(">I", block, 0x14, amiga_block_checksum(zeroed(bytes(block), 20)))
    img[root * 512:root * 512 + 512] = block
    return img


def _adfs_disc_record(log2secsize, name, total):
    rec = bytearray(58)
    rec[0] = log2secsize
    rec[1] = 16          # sectors per track
    rec[2] = 1           # heads
    rec[4] = 13          # idlen
    rec[5] = 7           # log2bpmb
    rec[7] = 1           # boot option
    rec[9] = 1           # zones
    struct.pack_into("<I", rec, 12, 0x203)
    struct.pack_into("<I", rec, 16, 512 * total)
    struct.pack_into("<H", rec, 20, 0x1234)
    rec[22:22 + len(name)] = name
    return rec


def build_adfs(log2secsize=9, name=b"HardDisc4", total=16):
    img = bytearray(512 * total)
    boot = bytearray(512)
    boot[0x1C0:0x1C0 + 58] = _adfs_disc_record(log2secsize, name, total)
    boot[0x1FF] = acorn_boot_checksum(bytes(boot))
    img[0xC00:0xE00] = boot
    return img


def build_adfs_new_map(name=b"NewMapDisc", total=16):
    """Zone 0 of a new map in sector 0 with the disc record at offset 4; no boot block."""
    img = bytearray(512 * total)
    zone = bytearray(512)
    zone[4:4 + 58] = _adfs_disc_record(9, name, total)
    # Check byte must come out nonzero
    for filler in range(1, 256):
        zone[0x80] = filler
        zone[0] = acorn_new_map_checksum(bytes(zone))
        if zone[0]:
            break
    img[:512] = zone
    return img


def build_adfs_old_map(name=b"FloppyDisc", total=64, directory=b"Hugo", title=b"FloppyRoot"):
    """Old map halves at 0 and 0x100, root directory at 0x200 ("Hugo") or 0x400 ("Nick")."""
    img = bytearray(256 * total)
    map0 = bytearray(256)
    map1 = bytearray(256)
    padded = name.ljust(10, b"\x00")
    map0[0xF7:0xFC] = padded[0::2]
    map1[0xF6:0xFB] = padded[1::2]
    map0[0xFC:0xFF] = total.to_bytes(3, "little")
    struct.pack_into("<HBB", map1, 0xFB, 0x4321, 2, 3)     # disc id, boot option, free end
    map0[0xFF] = acorn_old_map_checksum(bytes(map0))
    map1[0xFF] = acorn_old_map_checksum(bytes(map1))
    img[0:256] = map0
    img[256:512] = map1

    if directory == b"Hugo":
        d = 0x200
        img[d + 1:d + 5] = b"Hugo"
        img[d + 1228:d + 1228 + len(title)] = title
        img[d + 1275:d + 1279] = b"Hugo"
    else:
        d = 0x400
        img[d + 1:d + 5] = b"Nick"
        img[d + 2013:d + 2013 + len(title)] = title
        img[d + 2043:d + 2047] = b"Nick"
    return img


def build_hfs_payload(name=b"Macintosh HD"):
    """Boot blocks + MDB, laid out in 512-byte units (0x600 bytes)."""
    buf = bytearray(0x600)
    struct.pack_into(">H", buf, 0, 0x4C4B)
    buf[0x0A] = 6
    buf[0x0B:0x11] = b"System"
    buf[0x1A] = 6
    buf[0x1B:0x21] = b"Finder"

    m = 0x400
    struct.pack_into(">HII", buf, m, 0x4244, 3000000000, 3100000000)
    struct.pack_into(">HH", buf, m + 0x0A, 0x0100, 5)
    struct.pack_into(">HI", buf, m + 0x12, 1000, 4096)
    struct.pack_into(">H", buf, m + 0x22, 250)
    buf[m + 0x24] = len(name)
    buf[m + 0x25:m + 0x25 + len(name)] = name
    struct.pack_into(">I", buf, m + 0x54, 42)
    struct.pack_into(">II", buf, m + 0x5C + 24, 0x11223344, 0xAABBCCDD)
    return buf


def build_hfs(sector_size=512, total_bytes=8192, name=b"Macintosh HD"):
    img = bytearray(total_bytes)
    payload = build_hfs_payload(name)
    img[:len(payload)] = payload
    return img, sector_size


def _hfsplus_header(img, at):
    vh = at + 0x400
    struct.pack_into(">HHI", img, vh, 0x482B, 4, 0x100)
    img[vh + 8:vh + 12] = b"10.0"
    struct.pack_into(">III", img, vh + 0x10, 3000000000, 3100000000, 0)
    struct.pack_into(">II", img, vh + 0x20, 10, 3)
    struct.pack_into(">III", img, vh + 0x28, 4096, 8, 2)
    struct.pack_into(">I", img, vh + 0x50, 2)
    struct.pack_into(">II", img, vh + 0x50 + 24, 0xCAFEBABE, 0x12345678)


def build_hfsplus(total=64):
    img = bytearray(512 * total)
    _hfsplus_header(img, 0)
    return img


def build_hfs_wrapper(total=64):
    """HFS volume whose MDB says an HFS+ volume starts 16 sectors in."""
    img = bytearray(512 * total)
    m = 0x400
    struct.pack_into(">H", img, m, 0x4244)
    struct.pack_into(">I", img, m + 0x14, 512)
    struct.pack_into(">H", img, m + 0x1C, 16)
    struct.pack_into(">HH", img, m + 0x7C, 0x482B, 0)
    _hfsplus_header(img, 16 * 512)
    return img


def build_prodos(name=b"HELLO", version=0, total=280):
    img = bytearray(512 * total)
    b = 2 * 512
    struct.pack_into("<HH", img, b, 0, 3)
    img[b + 4] = 0xF0 | len(name)
    img[b + 5:b + 5 + len(name)] = name
    date_word = (99 << 9) | (12 << 5) | 31
    time_word = (13 << 8) | 45
    struct.pack_into("<HH", img, b + 0x1C, date_word, time_word)
    img[b + 0x20] = version
    img[b + 0x22] = 0xC3
    img[b + 0x23] = 0x27
    img[b + 0x24] = 0x0D
    struct.pack_into("<HHH", img, b + 0x25, 3, 6, total)
    return img


EXT_UUID = bytes(range(16))


def build_ext(blocks=32, total=64, incompat=0x0200):
    img = bytearray(512 * total)
    sb = 0x400
    struct.pack_into("<IIIII", img, sb, 16, blocks, 1, 10, 5)
    struct.pack_into("<II", img, sb + 0x14, 1, 0)
    struct.pack_into("<I", img, sb + 0x20, 8192)
    struct.pack_into("<III", img, sb + 0x28, 16, 0, 1600000000)
    struct.pack_into("<HhHH", img, sb + 0x34, 3, 20, 0xEF53, 1)
    struct.pack_into("<II", img, sb + 0x48, 0, 1)
    struct.pack_into("<I", img, sb + 0x60, incompat)
    img[sb + 0x68:sb + 0x78] = EXT_UUID
    img[sb + 0x78:sb + 0x78 + 9] = b"linuxroot"
    struct.pack_into("<I", img, sb + 0x108, 1500000000)
    return img


FSOKAY = 0x7C269D38


def build_sysv(endian="<", total=64):
    img = bytearray(512 * total)
    s = 512
    struct.pack_into(endian + "HI", img, s, 40, 32)             # isize, fsize
    struct.pack_into(endian + "H", img, s + 0x006, 7)           # nfree
    struct.pack_into(endian + "I", img, s + 0x19E, 0)           # time
    struct.pack_into(endian + "HH", img, s + 0x1A2, 16, 2)      # cylblks, gapblks
    struct.pack_into(endian + "IH", img, s + 0x1AA, 20, 30)     # tfree, tinode
    img[s + 0x1B0:s + 0x1B4] = b"root"
    img[s + 0x1B6:s + 0x1BB] = b"pack1"
    struct.pack_into(endian + "III", img, s + 0x1F4, FSOKAY, 0xFD187E20, 2)
    return img


def build_ufs(endian="<", magic=0x00011954, total=64):
    img = bytearray(512 * total)
    sb = 8192
    struct.pack_into(endian + "ii", img, sb + 0x20, 1600000000, 32)
    struct.pack_into(endian + "I", img, sb + 0x2C, 1)
    struct.pack_into(endian + "iiii", img, sb + 0x30, 8192, 1024, 8, 8)
    struct.pack_into(endian + "i", img, sb + 0xC4, 3)
    img[sb + 0xD1] = 1
    img[sb + 0xD4:sb + 0xD8] = b"/mnt"
    if magic == 0x19540119:
        img[sb + 0x2A8:sb + 0x2AF] = b"ufs2vol"
        struct.pack_into(endian + "Q", img, sb + 0x2C8, 0x1122334455667788)
        struct.pack_into(endian + "q", img, sb + 0x3F8, 4)
        struct.pack_into(endian + "q", img, sb + 0x438, 64)
    struct.pack_into(endian + "I", img, sb + 0x55C, magic)
    return img


def _iso_descriptors():
    """Volume descriptors 16..19 (PVD, El Torito, Joliet, terminator)."""
    pvd = bytearray(2048)
    pvd[0] = 1
    pvd[1:6] = b"CD001"
    pvd[6] = 1
    pvd[8:40] = b"LINUX".ljust(32)
    pvd[40:72] = b"CDROM_VOL".ljust(32)
    struct.pack_into("<I", pvd, 80, 20)
    struct.pack_into("<HxxHxxH", pvd, 120, 1, 1, 2048)
    pvd[813:830] = b"2020010112000000\x00"

    boot = bytearray(2048)
    boot[0] = 0
    boot[1:6] = b"CD001"
    boot[6] = 1
    boot[7:39] = b"EL TORITO SPECIFICATION".ljust(32, b"\x00")
    struct.pack_into("<I", boot, 0x47, 19)

    svd = bytearray(pvd)
    svd[0] = 2
    svd[40:72] = "JolietVolumeName".encode("utf-16-be")
    svd[88:91] = b"%/E"

    term = bytearray(2048)
    term[0] = 255
    term[1:6] = b"CD001"
    term[6] = 1
    return [pvd, boot, svd, term]


def build_iso(total=20):
    img = bytearray(2048 * total)
    for n, vd in enumerate(_iso_descriptors()):
        img[(16 + n) * 2048:(17 + n) * 2048] = vd
    return img


def build_iso_raw(total=20):
    """Same volume as build_iso, as raw 2352-byte Mode 1 sectors."""
    user = build_iso(total)
    img = bytearray()
    for lba in range(total):
        header = b"\x00" + b"\xFF" * 10 + b"\x00" + bytes([0, 2, lba & 0xFF, 1])
        img += header + user[lba * 2048:(lba + 1) * 2048] + b"\x00" * 288
    return img


def build_fat12(oem=b"MSDOS5.0", total=2880):
    img = bytearray(512 * total)
    img[0:3] = b"\xEB\x3C\x90"
    img[3:11] = oem
    struct.pack_into("<HBHBHHBHHHI", img, 0x0B, 512, 1, 1, 2, 224, total, 0xF0, 9, 18, 2, 0)
    struct.pack_into("<BBBI", img, 0x24, 0, 0, 0x29, 0x1234ABCD)
    img[0x2B:0x36] = b"MYDISK     "
    img[0x36:0x3E] = b"FAT12   "
    struct.pack_into("<H", img, 0x1FE, 0xAA55)
    # FAT #1: media byte, then clusters 2 and 3 in use
    img[512:518] = b"\xF0\xFF\xFF\xFF\xFF\xFF"
    return img


def build_fat32(total=64):
    img = bytearray(512 * total)
    img[0:3] = b"\xEB\x58\x90"
    img[3:11] = b"MSWIN4.1"
    struct.pack_into("<HBHBHHBH", img, 0x0B, 512, 1, 32, 2, 0, 0, 0xF8, 0)
    struct.pack_into("<I", img, 0x20, total)
    struct.pack_into("<IHHIHH", img, 0x24, 1, 0, 0, 2, 1, 6)
    struct.pack_into("<BBBI", img, 0x40, 0x80, 0, 0x29, 0xDEADBEEF)
    img[0x47:0x52] = b"FAT32VOL   "
    img[0x52:0x5A] = b"FAT32   "
    struct.pack_into("<H", img, 0x1FE, 0xAA55)

    fsinfo = 512
    struct.pack_into("<I", img, fsinfo, 0x41615252)
    struct.pack_into("<III", img, fsinfo + 0x1E4, 0x61417272, 25, 5)
    struct.pack_into("<I", img, fsinfo + 0x1FC, 0xAA550000)
    return img


# ─────────────────────────────────────────────────────────────
#  Generic layout detector (magic at byte 0x10 of sector 2)
# ─────────────────────────────────────────────────────────────

TOY_MAGIC = 0x56505242
TOY = Layout("ToySuperblock", [
    Field("magic", 0x10, "u32"),
    Field("label", 0x20, "cstr", length=16),
    Field("blocks", 0x30, "u32"),
])


def _toy_map(rec, draft, report, encoding, media):
    draft.volume_name = text(rec.label, encoding)
    draft.clusters = rec.blocks
    draft.cluster_size = media.sector_size
    report.add(f"Toy volume \"{draft.volume_name}\"")


def toy_detector(orders=(LITTLE,)):
    return LayoutDetector("toy", "Toy filesystem", TOY, 2 * 512,
                          magic=lambda r: r.magic == TOY_MAGIC, mapper=_toy_map,
                          orders=orders, extent=lambda r: r.blocks * 512)


def build_toy(endian="<", blocks=8, total=8):
    img = bytearray(512 * total)
    struct.pack_into(endian + "I", img, 0x410, TOY_MAGIC)
    img[0x420:0x429] = b"TOYVOLUME"
    struct.pack_into(endian + "I", img, 0x430, blocks)
    return img


def test_layout_detector_magic_in_sector_two():
    print("── Test: layout detector, magic at 0x10 of sector 2 ──")
    det = toy_detector()
    acc, part = _acc(build_toy())
    assert det.identify(acc, part)
    desc, report = det.extract(acc, part)
    assert desc.volume_name == "TOYVOLUME"
    assert desc.clusters == 8
    assert "Toy volume" in report

    # Wrong byte order is not tried unless asked for
    acc, part = _acc(build_toy(">"))
    assert not det.identify(acc, part)
    assert toy_detector(orders=(LITTLE, BIG)).identify(acc, part)

    # Declared extent beyond the partition
    acc, part = _acc(build_toy(blocks=9))
    assert not det.identify(acc, part)
    print("  ✅ layout detector: PASS")


# ─────────────────────────────────────────────────────────────
#  Per-format tests
# ─────────────────────────────────────────────────────────────

def test_amiga():
    print("── Test: AmigaDOS ──")
    det = AmigaDetector()
    acc, part = _acc(build_amiga())
    assert det.identify(acc, part)
    desc, report = det.extract(acc, part)
    root = bytes(build_amiga()[32 * 512:33 * 512])
    assert desc.type == "affs"
    assert desc.volume_name == "Workbench"
    assert desc.bootable
    assert not desc.dirty
    assert desc.cluster_size == 512 and desc.clusters == 64
    assert desc.volume_serial == f"{struct.unpack_from('>I', root, 0x14)[0]:08X}"
    assert desc.creation_date == datetime(1999, 11, 27, 10, 0)
    assert "Amiga Fast File System" in report

    # Broken bootblock checksum: not bootable, root still found mid-partition
    acc, part = _acc(build_amiga(good_boot=False))
    assert det.identify(acc, part)
    desc, _ = det.extract(acc, part)
    assert not desc.bootable
    assert desc.volume_name == "Workbench"

    # Corrupt root block checksum: no match
    img = build_amiga(good_boot=False)
    img[32 * 512 + 0x14] ^= 0xFF
    acc, part = _acc(img)
    assert not det.identify(acc, part)
    print("  ✅ AmigaDOS: PASS")


def test_amiga_unset_dates():
    print("── Test: AmigaDOS unset dates ──")
    assert amiga_to_datetime(0, 0, 0) is None
    assert amiga_to_datetime(0, 0, 50) == datetime(1978, 1, 1, 0, 0, 1)

    img = build_amiga()
    root = 32 * 512
    tail = root + 512 - 200
    img[tail + 172:tail + 184] = bytes(12)
    struct.pack_into(">I", img, root + 0x14, amiga_block_checksum(zeroed(bytes(img[root:root + 512]), 20)))
    det = AmigaDetector()
    acc, part = _acc(img)
    assert det.identify(acc, part)
    desc, report = det.extract(acc, part)
    assert desc.creation_date is None
    assert desc.modification_date == datetime(1999, 11, 28, 1, 0, 1)
    assert "Volume created on" not in report
    assert "Root directory last modified" not in report
    print("  ✅ AmigaDOS unset dates: PASS")


def test_acorn():
    print("── Test: Acorn ADFS ──")
    det = AcornDetector()
    acc, part = _acc(build_adfs())
    assert det.identify(acc, part)
    desc, report = det.extract(acc, part)
    assert desc.type == "Acorn Advanced Disc Filing System"
    assert desc.cluster_size == 512
    assert desc.clusters == 16
    assert desc.volume_name == "HardDisc4"
    assert desc.volume_serial == "1234"
    assert desc.bootable
    assert "boot block" in report
    print("  ✅ Acorn ADFS: PASS")


def test_acorn_rejects_small_sector_log():
    """A disc record claiming 2**3-byte sectors is rejected."""
    print("── Test: Acorn log2secsize 3 ──")
    acc, part = _acc(build_adfs(log2secsize=3))
    assert not AcornDetector().identify(acc, part)

    # Bad check byte is a rejection too
    img = build_adfs()
    img[0xC00 + 0x1FF] ^= 0x01
    acc, part = _acc(img)
    assert not AcornDetector().identify(acc, part)
    print("  ✅ Acorn log2secsize 3: PASS")


def test_acorn_new_map():
    print("── Test: Acorn ADFS new map ──")
    det = AcornDetector()
    img = build_adfs_new_map()
    assert img[0] == acorn_new_map_checksum(bytes(img[:512]))
    acc, part = _acc(img)
    assert det.identify(acc, part)
    desc, report = det.extract(acc, part)
    assert desc.volume_name == "NewMapDisc"
    assert desc.cluster_size == 512 and desc.clusters == 16
    assert desc.volume_serial == "1234"
    assert "Disc record found in the new map" in report

    # Zone check byte off by one: the all-zero boot block record is rejected
    img[0] ^= 0x01
    acc, part = _acc(img)
    assert not det.identify(acc, part)
    print("  ✅ Acorn ADFS new map: PASS")


def test_acorn_old_map():
    print("── Test: Acorn ADFS old map ──")
    det = AcornDetector()
    for ss in (256, 512, 1024):
        acc, part = _acc(build_adfs_old_map(), ss)
        assert det.identify(acc, part), ss
        desc, report = det.extract(acc, part)
        assert desc.type == "Acorn Advanced Disc Filing System"
        assert desc.volume_name == "FloppyDisc"
        assert desc.cluster_size == ss and desc.clusters == 64 * 256 // ss
        assert desc.volume_serial == "4321"
        assert desc.bootable
        assert "Old map found" in report
        assert "Volume has 16384 bytes" in report
        print(f"  {ss:5d}: ✅")

    # Unnamed map: the name comes from the root directory
    acc, part = _acc(build_adfs_old_map(name=b""))
    assert det.extract(acc, part)[0].volume_name == "FloppyRoot"
    acc, part = _acc(build_adfs_old_map(name=b"", directory=b"Nick", title=b"ADFSDdisc\r"), 1024)
    assert det.identify(acc, part)
    assert det.extract(acc, part)[0].volume_name == "ADFSDdisc"

    # Check byte mismatch in either half, or no root directory: no match
    for index in (0xFF, 0x1FF):
        img = build_adfs_old_map()
        img[index] ^= 0x01
        acc, part = _acc(img, 256)
        assert not det.identify(acc, part), hex(index)
    img = build_adfs_old_map()
    img[0x201:0x205] = b"Hugh"
    acc, part = _acc(img, 256)
    assert not det.identify(acc, part)

    # Old maps only describe whole discs
    acc = MemoryAccessor(bytes(256 * 4) + bytes(build_adfs_old_map()), 256)
    assert not det.identify(acc, Partition(4, acc.total_sectors - 1))
    print("  ✅ Acorn ADFS old map: PASS")


def test_hfs():
    print("── Test: HFS ──")
    det = HfsDetector()
    img, ss = build_hfs()
    acc, part = _acc(img, ss)
    assert det.identify(acc, part)
    desc, report = det.extract(acc, part)
    assert desc.type == "HFS"
    assert desc.volume_name == "Macintosh HD"
    assert desc.clusters == 1000 and desc.cluster_size == 4096
    assert desc.free_clusters == 250
    assert desc.files == 42
    assert desc.bootable
    assert not desc.dirty
    assert desc.volume_serial == "11223344aabbccdd"
    assert desc.creation_date == datetime(1999, 1, 24, 5, 20)
    assert "System filename: System" in report
    print("  ✅ HFS: PASS")


def test_hfs_on_optical_sectors():
    """A 512-byte HFS layout inside 2048-byte sectors gives the same descriptor."""
    print("── Test: HFS at 0x400 of a 2048-byte LBA 0 ──")
    det = HfsDetector()
    acc512, part512 = _acc(*build_hfs(512))
    acc2k, part2k = _acc(*build_hfs(2048))
    assert acc2k.total_sectors == 4
    assert det.identify(acc2k, part2k)
    d512, _ = det.extract(acc512, part512)
    d2k, report = det.extract(acc2k, part2k)
    assert d512 == d2k
    assert "512 bytes/sector" in report
    print("  ✅ HFS on optical sectors: PASS")


def test_hfsplus():
    print("── Test: HFS+ ──")
    det = HfsPlusDetector()
    acc, part = _acc(build_hfsplus())
    assert det.identify(acc, part)
    assert not HfsDetector().identify(acc, part)
    desc, report = det.extract(acc, part)
    assert desc.type == "HFS+"
    assert desc.cluster_size == 4096 and desc.clusters == 8
    assert desc.free_clusters == 2
    assert desc.files == 10
    assert desc.bootable
    assert not desc.dirty
    assert desc.system_identifier == "10.0"
    assert desc.volume_serial == "CAFEBABE12345678"
    assert "Volume is unmounted." in report
    print("  ✅ HFS+: PASS")


def test_hfs_wrapper_belongs_to_hfsplus():
    print("── Test: HFS wrapper around HFS+ ──")
    acc, part = _acc(build_hfs_wrapper())
    assert not HfsDetector().identify(acc, part)
    assert HfsPlusDetector().identify(acc, part)
    desc, report = HfsPlusDetector().extract(acc, part)
    assert desc.type == "HFS+"
    assert desc.clusters == 8
    assert "wrapped" in report
    print("  ✅ HFS wrapper around HFS+: PASS")


def test_prodos():
    print("── Test: ProDOS ──")
    det = ProdosDetector()
    acc, part = _acc(build_prodos())
    assert det.identify(acc, part)
    desc, report = det.extract(acc, part)
    assert desc.type == "ProDOS"
    assert desc.volume_name == "HELLO"
    assert desc.files == 3
    assert desc.clusters == 280 and desc.cluster_size == 512
    assert desc.creation_date == datetime(1999, 12, 31, 13, 45)
    assert "WARNING" not in report

    # Unknown version: still claimed, report carries a warning
    acc, part = _acc(build_prodos(version=5))
    assert det.identify(acc, part)
    _, report = det.extract(acc, part)
    assert "WARNING: unknown ProDOS version" in report

    # Volume larger than the partition
    acc = MemoryAccessor(bytes(build_prodos()))
    assert not det.identify(acc, Partition(0, 199))
    print("  ✅ ProDOS: PASS")


def test_ext():
    print("── Test: ext2/3/4 ──")
    det = ext2_detector()
    acc, part = _acc(build_ext())
    assert det.identify(acc, part)
    desc, report = det.extract(acc, part)
    assert desc.type == "ext4"
    assert desc.cluster_size == 1024 and desc.clusters == 32
    assert desc.free_clusters == 10
    assert desc.volume_name == "linuxroot"
    assert desc.volume_serial == str(uuid.UUID(bytes=EXT_UUID))
    assert desc.system_identifier == "Linux"
    assert desc.creation_date == datetime(2017, 7, 14, 2, 40)
    assert not desc.dirty

    acc, part = _acc(build_ext(incompat=0))
    assert det.extract(acc, part)[0].type == "ext2"

    # More blocks than the partition holds
    acc, part = _acc(build_ext(blocks=1000))
    assert not det.identify(acc, part)
    print("  ✅ ext2/3/4: PASS")


def test_ext4_64bit_block_counts():
    print("── Test: ext4 64-bit block counts ──")
    det = ext2_detector()
    img = build_ext(incompat=0x0200 | 0x0080)
    struct.pack_into("<I", img, 0x400 + 0x150, 1)       # blocks_hi
    struct.pack_into("<I", img, 0x400 + 0x158, 1)       # free_blocks_hi
    acc = MemoryAccessor(bytes(img))
    blocks = 2 ** 32 + 32

    # The high word counts: 4 TiB of 1 KiB blocks do not fit the image partition
    assert not det.identify(acc, Partition.whole(acc))
    big = Partition(0, blocks * 2 - 1)
    assert det.identify(acc, big)
    desc, report = det.extract(acc, big)
    assert desc.type == "ext4"
    assert desc.cluster_size == 1024
    assert desc.clusters == blocks
    assert desc.free_clusters == 2 ** 32 + 10
    assert "Uses 64-bit block numbers" in report

    # Without the feature bit the high words are ignored
    img[0x400 + 0x60] = 0x00
    img[0x400 + 0x61] = 0x02
    acc = MemoryAccessor(bytes(img))
    desc, _ = det.extract(acc, Partition.whole(acc))
    assert desc.clusters == 32 and desc.free_clusters == 10
    print("  ✅ ext4 64-bit block counts: PASS")


def test_sysv_both_byte_orders():
    print("── Test: System V, both byte orders ──")
    det = SysvDetector()
    results = {}
    for endian in ("<", ">"):
        acc, part = _acc(build_sysv(endian))
        assert det.identify(acc, part), endian
        desc, report = det.extract(acc, part)
        assert desc.type == "sysv_r2"
        assert desc.cluster_size == 1024 and desc.clusters == 32
        assert desc.free_clusters == 20
        assert desc.volume_name == "root"
        assert not desc.dirty
        results[endian] = desc
        print(f"  {'big' if endian == '>' else 'little'}-endian: ✅")
    assert results["<"] == results[">"]
    assert "big-endian" in report
    print("  ✅ System V: PASS")


def test_ufs_both_byte_orders():
    print("── Test: UFS, both byte orders ──")
    det = UfsDetector()
    for endian in ("<", ">"):
        acc, part = _acc(build_ufs(endian))
        assert det.identify(acc, part), endian
        desc, report = det.extract(acc, part)
        assert desc.type == "UFS"
        assert desc.cluster_size == 1024 and desc.clusters == 32
        assert desc.free_clusters == 3
        assert ("Big-endian" in report) == (endian == ">")
        assert "Guessed as 4.3BSD FFS" in report
    print("  ✅ UFS: PASS")


def test_ufs2_and_bad_magic():
    print("── Test: UFS2 and incompletely initialized UFS ──")
    det = UfsDetector()
    acc, part = _acc(build_ufs(">", magic=0x19540119))
    desc, _ = det.extract(acc, part)
    assert desc.type == "UFS2"
    assert desc.clusters == 64 and desc.free_clusters == 4
    assert desc.volume_name == "ufs2vol"
    assert desc.volume_serial == "1122334455667788"

    acc, part = _acc(build_ufs(magic=0x19960408))
    assert det.identify(acc, part)
    _, report = det.extract(acc, part)
    assert "WARNING: superblock is incompletely initialized" in report
    print("  ✅ UFS2 and incompletely initialized UFS: PASS")


def test_ufs_search_skips_unreadable_locations():
    """A candidate past the end of the image does not stop the search."""
    print("── Test: UFS superblock search past the image ──")
    det = UfsDetector()
    img = build_ufs("<", total=40)
    acc = MemoryAccessor(bytes(img))
    # Sector 32 is tried before 16 and its read runs off the 40-sector image
    part = Partition(0, 199)
    assert det.identify(acc, part)
    desc, report = det.extract(acc, part)
    assert desc.type == "UFS"
    assert "Guessed as 4.3BSD FFS" in report
    print("  ✅ UFS superblock search past the image: PASS")


def test_iso9660():
    print("── Test: ISO 9660 ──")
    det = Iso9660Detector()
    acc, part = _acc(build_iso(), 2048)
    assert det.identify(acc, part)
    desc, report = det.extract(acc, part)
    assert desc.type == "ISO9660"
    assert desc.cluster_size == 2048 and desc.clusters == 20
    assert desc.volume_name == "JolietVolumeName"
    assert desc.system_identifier == "LINUX"
    assert desc.bootable
    assert desc.creation_date == datetime(2020, 1, 1, 12, 0)
    assert "Joliet extensions present." in report
    assert "El Torito" in report

    # Not on 512-byte media, not without sector 16
    assert not det.identify(*_acc(build_iso(), 512))
    assert not det.identify(*_acc(build_iso()[:2048 * 16], 2048))
    print("  ✅ ISO 9660: PASS")


def test_iso9660_raw_sectors():
    print("── Test: ISO 9660 on raw 2352-byte sectors ──")
    det = Iso9660Detector()
    acc, part = _acc(build_iso_raw(), 2352)
    assert det.identify(acc, part)
    desc, report = det.extract(acc, part)
    cooked, _ = det.extract(*_acc(build_iso(), 2048))
    assert desc.volume_name == cooked.volume_name
    assert desc.clusters == cooked.clusters
    assert "User data starts at byte 16" in report
    print("  ✅ ISO 9660 raw sectors: PASS")


def test_fat12():
    print("── Test: FAT12 ──")
    det = FatDetector()
    acc, part = _acc(build_fat12())
    assert det.identify(acc, part)
    desc, report = det.extract(acc, part)
    assert desc.type == "FAT12"
    assert desc.cluster_size == 512
    assert desc.clusters == 2847
    assert desc.free_clusters == 2845
    assert desc.volume_serial == "1234-ABCD"
    assert desc.volume_name == "MYDISK"
    assert desc.bootable
    assert "OEM name: MSDOS5.0" in report
    print("  ✅ FAT12: PASS")


def test_fat32_fsinfo():
    print("── Test: FAT32 with FSInfo ──")
    det = FatDetector()
    acc, part = _acc(build_fat32())
    assert det.identify(acc, part)
    desc, _ = det.extract(acc, part)
    assert desc.type == "FAT32"
    assert desc.clusters == 30
    assert desc.free_clusters == 25
    assert desc.volume_serial == "DEAD-BEEF"
    assert desc.volume_name == "FAT32VOL"
    print("  ✅ FAT32 with FSInfo: PASS")


def test_fat_negative_matches():
    print("── Test: FAT negative matches ──")
    det = FatDetector()
    assert not det.identify(*_acc(build_fat12(oem=b"EXFAT   ")))
    assert not det.identify(*_acc(build_fat12(oem=b"FQNX4FS ")))

    ntfs = build_fat12(oem=b"NTFS    ")
    ntfs[0x10] = 0                              # no FATs
    struct.pack_into("<H", ntfs, 0x16, 0)       # no FAT sectors
    assert not det.identify(*_acc(ntfs))

    hpfs = build_fat12()
    struct.pack_into("<II", hpfs, 16 * 512, 0xF995E849, 0xFA53E9C5)
    assert not det.identify(*_acc(hpfs))

    odd = build_fat12()
    struct.pack_into("<H", odd, 0x0B, 513)      # bytes per sector not a power of two
    assert not det.identify(*_acc(odd))
    print("  ✅ FAT negative matches: PASS")


def test_fixed_offsets_follow_sector_size():
    """Structures at fixed byte offsets are found whatever the sector size."""
    print("── Test: byte offsets across sector sizes ──")
    hfs = HfsDetector()
    d512, _ = hfs.extract(*_acc(*build_hfs(512)))
    for ss in (1024, 4096):
        acc, part = _acc(*build_hfs(ss))
        assert hfs.identify(acc, part), ss
        assert not HfsPlusDetector().identify(acc, part)
        desc, report = hfs.extract(acc, part)
        assert desc == d512
        assert "512 bytes/sector" not in report
        print(f"  HFS   {ss:5d}: ✅")

    acorn = AcornDetector()
    a512, _ = acorn.extract(*_acc(build_adfs()))
    for ss in (1024, 2048):
        acc, part = _acc(build_adfs(), ss)
        assert acorn.identify(acc, part), ss
        desc, report = acorn.extract(acc, part)
        assert desc == a512
        assert "boot block" in report
        print(f"  ADFS  {ss:5d}: ✅")

    prodos = ProdosDetector()
    p512, _ = prodos.extract(*_acc(build_prodos()))
    acc, part = _acc(build_prodos(), 1024)
    assert prodos.identify(acc, part)
    assert prodos.extract(acc, part)[0] == p512
    print("  ProDOS 1024: ✅")
    print("  ✅ byte offsets across sector sizes: PASS")


def test_extract_is_idempotent():
    print("── Test: repeated extraction ──")
    cases = [
        (AmigaDetector(), build_amiga(), 512),
        (HfsDetector(), build_hfs()[0], 512),
        (ext2_detector(), build_ext(), 512),
        (SysvDetector(), build_sysv(">"), 512),
        (Iso9660Detector(), build_iso(), 2048),
        (FatDetector(), build_fat12(), 512),
    ]
    for det, img, ss in cases:
        acc, part = _acc(img, ss)
        first = det.extract(acc, part)
        second = det.extract(acc, part)
        assert first == second, det.format_id
        assert isinstance(first[0], VolumeDescriptor)
    print("  ✅ repeated extraction: PASS")


def test_extract_on_garbage_never_raises():
    print("── Test: extraction on unrecognized data ──")
    acc, part = _acc(bytes(512 * 8))
    for det in (AmigaDetector(), AcornDetector(), HfsDetector(), HfsPlusDetector(),
                ProdosDetector(), ext2_detector(), SysvDetector(), UfsDetector(),
                Iso9660Detector(), FatDetector()):
        desc, report = det.extract(acc, part)
        assert isinstance(desc, VolumeDescriptor)
        assert "WARNING" in report or desc.type, det.format_id
    print("  ✅ extraction on unrecognized data: PASS")


def main():
    print("=" * 60)
    print("  volprobe — Detector Tests")
    print("=" * 60)
    print()

    test_layout_detector_magic_in_sector_two()
    test_amiga()
    test_amiga_unset_dates()
    test_acorn()
    test_acorn_rejects_small_sector_log()
    test_acorn_new_map()
    test_acorn_old_map()
    test_hfs()
    test_hfs_on_optical_sectors()
    test_hfsplus()
    test_hfs_wrapper_belongs_to_hfsplus()
    test_prodos()
    test_ext()
    test_ext4_64bit_block_counts()
    test_sysv_both_byte_orders()
    test_ufs_both_byte_orders()
    test_ufs2_and_bad_magic()
    test_ufs_search_skips_unreadable_locations()
    test_iso9660()
    test_iso9660_raw_sectors()
    test_fat12()
    test_fat32_fsinfo()
    test_fat_negative_matches()
    test_fixed_offsets_follow_sector_size()
    test_extract_is_idempotent()
    test_extract_on_garbage_never_raises()

    print()
    print("=" * 60)
    print("  ALL TESTS PASSED ✅")
    print("=" * 60)


if __name__ == "__main__":
    main()
