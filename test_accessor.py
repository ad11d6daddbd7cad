"""
Sector accessor tests: partition-relative reads, bounds checking,
sector-size normalization and the optical sub-offset probe.
"""
import os
import shutil
import tempfile
import threading

import pytest

from volprobe.accessor import (
    MemoryAccessor, ImageAccessor, Partition, SUB_OFFSETS,
    read_checked, read_bytes, probe_sub_offsets, is_optical, sectors_for,
)
from volprobe.errors import OutOfRange


def _numbered(sector_size, count):
    """Image whose every sector is filled with its own LBA."""
    return b"".join(bytes([lba & 0xFF]) * sector_size for lba in range(count))


def test_partition_math():
    print("── Test: partition math ──")
    p = Partition(10, 19)
    assert p.length == 10
    assert p.size(512) == 5120

    acc = MemoryAccessor(b"\x00" * 512 * 8)
    whole = Partition.whole(acc)
    assert (whole.start, whole.end) == (0, 7)
    assert acc.total_sectors == 8
    assert sectors_for(0x800, 512) == 4
    assert sectors_for(0x800, 2048) == 1
    assert sectors_for(513, 512) == 2
    assert is_optical(2048) and is_optical(2352) and not is_optical(512)
    print("  ✅ partition math: PASS")


def test_read_checked_is_partition_relative():
    print("── Test: partition-relative reads ──")
    acc = MemoryAccessor(_numbered(512, 16))
    part = Partition(4, 11)
    assert read_checked(acc, part, 0, 1) == bytes([4]) * 512
    assert read_checked(acc, part, 7, 1) == bytes([11]) * 512
    assert read_checked(acc, part, 2, 3)[512:1024] == bytes([7]) * 512
    print("  ✅ partition-relative reads: PASS")


def test_read_checked_bounds():
    print("── Test: out-of-range reads ──")
    acc = MemoryAccessor(_numbered(512, 16))

    # Past the partition end
    with pytest.raises(OutOfRange):
        read_checked(acc, Partition(0, 7), 7, 2)
    # Past the image even though the partition claims more
    with pytest.raises(OutOfRange):
        read_checked(acc, Partition(0, 99), 16, 1)
    # Nonsense requests
    with pytest.raises(OutOfRange):
        read_checked(acc, Partition(0, 7), -1, 1)
    with pytest.raises(OutOfRange):
        read_checked(acc, Partition(0, 7), 0, 0)

    # Truncated last sector is a short read
    short = MemoryAccessor(_numbered(512, 4)[:-100])
    with pytest.raises(OutOfRange):
        read_checked(short, Partition(0, 3), 3, 1)

    # Raw accessor reads stay lenient
    assert acc.read_sectors(100, 1) == b""
    assert acc.read_sectors(-1, 1) == b""
    print("  ✅ out-of-range reads: PASS")


def test_sector_size_normalization():
    print("── Test: sector size normalization ──")
    payload = bytes(range(256)) * 2
    for ss in (256, 512, 1024, 2048):
        image = bytearray(8192)
        image[0x400:0x400 + 512] = payload
        acc = MemoryAccessor(bytes(image), ss)
        got = read_bytes(acc, Partition.whole(acc), 0x400, 512)
        assert got == payload, f"sector size {ss}"
        # Unaligned offset spanning a sector boundary
        got = read_bytes(acc, Partition.whole(acc), 0x4F0, 0x20)
        assert got == payload[0xF0:0x110], f"sector size {ss} (unaligned)"
        print(f"  {ss:5d}-byte sectors: ✅")
    print("  ✅ sector size normalization: PASS")


def test_sub_offset_probe():
    print("── Test: sub-offset probe ──")
    image = bytearray(2048 * 4)
    image[0x600:0x602] = b"OK"
    acc = MemoryAccessor(bytes(image), 2048)
    part = Partition.whole(acc)

    hit = probe_sub_offsets(acc, part, 0, 512, lambda b: b[:2] == b"OK")
    assert hit is not None
    off, data = hit
    assert off == 0x600
    assert len(data) == 512 and data[:2] == b"OK"

    assert probe_sub_offsets(acc, part, 0, 512, lambda b: b[:2] == b"NO") is None
    assert 0x400 in SUB_OFFSETS
    print("  ✅ sub-offset probe: PASS")


def test_image_accessor_mmap_and_buffered():
    print("── Test: image accessor ──")
    tmpdir = tempfile.mkdtemp(prefix="test_volprobe_")
    try:
        path = os.path.join(tmpdir, "disk.img")
        data = _numbered(512, 32)
        with open(path, "wb") as f:
            f.write(data)

        for use_mmap in (True, False):
            with ImageAccessor.open(path, sector_size=512, use_mmap=use_mmap) as acc:
                assert acc.is_mmap == use_mmap
                assert acc.total_sectors == 32
                assert acc.read_sector(5) == bytes([5]) * 512
                assert read_checked(acc, Partition(8, 15), 1, 2) == bytes([9]) * 512 + bytes([10]) * 512
            print(f"  mmap={use_mmap}: ✅")
        print("  ✅ image accessor: PASS")
    finally:
        shutil.rmtree(tmpdir, ignore_errors=True)


def test_buffered_reads_from_threads():
    print("── Test: concurrent buffered reads ──")
    tmpdir = tempfile.mkdtemp(prefix="test_volprobe_")
    try:
        path = os.path.join(tmpdir, "disk.img")
        with open(path, "wb") as f:
            f.write(_numbered(512, 64))

        errors = []
        with ImageAccessor.open(path, use_mmap=False) as acc:
            def worker(lba):
                for _ in range(200):
                    if acc.read_sector(lba) != bytes([lba]) * 512:
                        errors.append(lba)
                        return

            threads = [threading.Thread(target=worker, args=(i,)) for i in range(16)]
            for t in threads:
                t.start()
            for t in threads:
                t.join()
        assert not errors, f"interleaved reads on sectors {errors}"
        print("  ✅ concurrent buffered reads: PASS")
    finally:
        shutil.rmtree(tmpdir, ignore_errors=True)


def test_open_with_bad_sector_size_closes_file(monkeypatch):
    print("── Test: rejected sector size ──")
    opened = []

    def tracking_open(*args, **kwargs):
        fh = open(*args, **kwargs)
        opened.append(fh)
        return fh

    monkeypatch.setattr("volprobe.accessor.open", tracking_open, raising=False)
    tmpdir = tempfile.mkdtemp(prefix="test_volprobe_")
    try:
        path = os.path.join(tmpdir, "disk.img")
        with open(path, "wb") as f:
            f.write(_numbered(512, 4))

        for bad in (0, -512):
            with pytest.raises(ValueError):
                ImageAccessor.open(path, sector_size=bad)
        assert len(opened) == 2
        assert all(fh.closed for fh in opened)
        print("  ✅ rejected sector size: PASS")
    finally:
        shutil.rmtree(tmpdir, ignore_errors=True)


def main():
    print("=" * 60)
    print("  volprobe — Sector Accessor Tests")
    print("=" * 60)
    print()

    test_partition_math()
    test_read_checked_is_partition_relative()
    test_read_checked_bounds()
    test_sector_size_normalization()
    test_sub_offset_probe()
    test_image_accessor_mmap_and_buffered()
    test_buffered_reads_from_threads()

    print()
    print("=" * 60)
    print("  ALL TESTS PASSED ✅")
    print("=" * 60)


if __name__ == "__main__":
    main()
