"""
volprobe — command-line entry point.

Usage:
    volprobe disk.img                      # probe the whole image
    volprobe cd.iso --sector-size 2048     # optical image
    volprobe disk.img --start 63 --end 2047 --format fat
    volprobe disk.E01 --tsk                # read through The Sleuth Kit
"""

import sys
import json
import logging
import argparse
import dataclasses

from . import __version__
from .accessor import ImageAccessor, Partition
from .config import ProbeConfig
from .registry import default_registry, ProbeState
from . import tsk_accessor

EXIT_MATCH = 0
EXIT_NO_MATCH = 1
EXIT_IO_ERROR = 2
EXIT_AMBIGUOUS = 3

logger = logging.getLogger("volprobe")


def _fmt(n):
    s = float(n)
    for u in ("B", "KB", "MB", "GB"):
        if s < 1024:
            return f"{s:.1f} {u}"
        s /= 1024
    return f"{s:.1f} TB"


def _setup_logging(verbose: bool, quiet: bool):
    level = logging.DEBUG if verbose else logging.WARNING if quiet else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _sector_size(value: str) -> int:
    size = int(value)
    if size <= 0:
        raise argparse.ArgumentTypeError(f"sector size must be positive, got {value}")
    return size


def _partition(args, accessor) -> Partition:
    whole = Partition.whole(accessor)
    start = args.start if args.start is not None else whole.start
    end = args.end if args.end is not None else whole.end
    return Partition(start, end, accessor.sector_size)


def _write_json(path, result, partition, accessor):
    doc = {
        "format": result.format_id,
        "state": result.state,
        "candidates": list(result.candidates),
        "partition": {"start": partition.start, "end": partition.end,
                      "sector_size": accessor.sector_size},
        "descriptor": dataclasses.asdict(result.descriptor) if result.descriptor else None,
        "report": result.report,
    }
    with open(path, "w") as f:
        json.dump(doc, f, indent=2, default=str)


def _open(args):
    if args.tsk:
        return tsk_accessor.TskImageAccessor(args.image, sector_size=args.sector_size)
    return ImageAccessor.open(args.image, sector_size=args.sector_size, use_mmap=not args.no_mmap)


def probe_image(args) -> int:
    registry = default_registry()
    config = ProbeConfig(
        sector_size=args.sector_size,
        stop_at_first=args.first,
        formats=tuple(args.format) if args.format else None,
        encoding=args.encoding,
        use_mmap=not args.no_mmap,
    )

    print("=" * 60)
    print(f"  volprobe  v{__version__}")
    print("  Legacy filesystem detection & volume metadata")
    print("=" * 60)
    print()

    try:
        accessor = _open(args)
    except (OSError, RuntimeError, ValueError) as e:
        print(f"Cannot open {args.image}: {e}", file=sys.stderr)
        return EXIT_IO_ERROR

    with accessor:
        partition = _partition(args, accessor)
        print(f"Image:       {args.image}")
        print(f"Size:        {_fmt(accessor.size)} ({accessor.total_sectors} sectors "
              f"of {accessor.sector_size} bytes)")
        print(f"Partition:   LBA {partition.start}..{partition.end} "
              f"({_fmt(partition.size(accessor.sector_size))})")
        if partition.start > partition.end or partition.end >= accessor.total_sectors:
            print("Partition lies outside the image.", file=sys.stderr)
            return EXIT_IO_ERROR
        print()

        result = registry.probe(accessor, partition, config)

        if result.state == ProbeState.AMBIGUOUS:
            print("─" * 60)
            print(f"  ⚠️  Ambiguous: claimed by {', '.join(result.candidates)}")
            print("  Re-run with --format to pick one.")
            print("─" * 60)
            code = EXIT_AMBIGUOUS
        elif result.state != ProbeState.EXTRACTED:
            print("  No known filesystem found.")
            code = EXIT_NO_MATCH
        else:
            print("─" * 60)
            print(result.report, end="")
            print("─" * 60)
            for line in result.descriptor.lines():
                print(f"  {line}")
            print()
            print(f"  {result.descriptor.summary}")
            code = EXIT_MATCH

        if args.tsk:
            verdict = tsk_accessor.tsk_filesystem_name(
                accessor, partition.start * accessor.sector_size)
            print(f"  The Sleuth Kit says: {verdict or 'no filesystem'}")

        if args.json:
            _write_json(args.json, result, partition, accessor)
            print(f"  JSON: {args.json}")
    print()
    return code


def list_formats() -> int:
    for detector in default_registry():
        print(f"  {detector.format_id:10s} {detector.name}")
    return EXIT_MATCH


def main(argv=None):
    parser = argparse.ArgumentParser(
        prog="volprobe",
        description="Identify legacy filesystems in raw images and print volume metadata.")
    parser.add_argument("image", nargs="?", help="Raw image file or block device")
    parser.add_argument("--sector-size", type=_sector_size, default=512,
                        help="Bytes per sector (512, 256, 2048, 2352, ...)")
    parser.add_argument("--start", type=int, default=None, help="First LBA of the partition")
    parser.add_argument("--end", type=int, default=None, help="Last LBA of the partition (inclusive)")
    parser.add_argument("--format", action="append", default=[], metavar="ID",
                        help="Only try this format (repeatable)")
    parser.add_argument("--first", action="store_true",
                        help="Stop at the first detector that matches")
    parser.add_argument("--encoding", default=None, help="Override the text encoding")
    parser.add_argument("--json", default="", metavar="PATH", help="Write the result as JSON")
    parser.add_argument("--tsk", action="store_true",
                        help="Read through The Sleuth Kit (pytsk3) and cross-check")
    parser.add_argument("--no-mmap", action="store_true", help="Use buffered reads")
    parser.add_argument("--list-formats", action="store_true", help="List formats and exit")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    parser.add_argument("-q", "--quiet", action="store_true", help="Warnings only")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    args = parser.parse_args(argv)

    _setup_logging(args.verbose, args.quiet)

    if args.list_formats:
        return list_formats()
    if not args.image:
        parser.error("an image path is required")
    if args.tsk and not tsk_accessor.is_available():
        print("--tsk needs pytsk3 (pip install pytsk3)", file=sys.stderr)
        return EXIT_IO_ERROR

    known = set(default_registry().formats)
    unknown = [f for f in args.format if f not in known]
    if unknown:
        parser.error(f"unknown format(s): {', '.join(unknown)}")

    return probe_image(args)


if __name__ == "__main__":
    sys.exit(main())
