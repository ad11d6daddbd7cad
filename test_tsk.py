#!/usr/bin/env python3
"""Probe through The Sleuth Kit (pytsk3): same verdicts as the plain accessor."""
import os
import shutil
import tempfile

import pytest

pytsk3 = pytest.importorskip("pytsk3")

from volprobe.accessor import ImageAccessor, Partition
from volprobe.registry import default_registry
from volprobe.tsk_accessor import TskImageAccessor, tsk_filesystem_name, is_available

from test_detectors import build_fat12, build_hfsplus


def test_tsk_accessor_matches_image_accessor():
    print("── Test: TSK accessor ──")
    assert is_available()
    tmpdir = tempfile.mkdtemp(prefix="test_volprobe_")
    try:
        for name, data in (("floppy.img", build_fat12()), ("mac.img", build_hfsplus())):
            path = os.path.join(tmpdir, name)
            with open(path, "wb") as f:
                f.write(bytes(data))

            with ImageAccessor.open(path) as acc:
                plain = default_registry().probe(acc, Partition.whole(acc))
            with TskImageAccessor(path) as acc:
                assert acc.total_sectors == len(data) // 512
                assert acc.read_sector(0) == bytes(data[:512])
                via_tsk = default_registry().probe(acc, Partition.whole(acc))
                verdict = tsk_filesystem_name(acc)
            assert via_tsk == plain
            print(f"  {name}: {via_tsk.format_id}, libtsk says {verdict or 'nothing'}")
        print("  ✅ TSK accessor: PASS")
    finally:
        shutil.rmtree(tmpdir, ignore_errors=True)


def test_tsk_open_failure():
    with pytest.raises(RuntimeError):
        TskImageAccessor("/nonexistent/disk.img")


if __name__ == "__main__":
    test_tsk_accessor_matches_image_accessor()
    test_tsk_open_failure()
    print("Done")
