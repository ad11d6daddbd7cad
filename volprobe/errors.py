"""
Probe Errors — the four ways a detector can fail to claim a partition.

None of these ever leave ``Detector.identify`` / ``Detector.extract``:
the detector boundary turns them into "no match" (identify) or a
partial descriptor plus a report line (extract).  Only the registry's
``try_identify`` raises one on purpose: ``AmbiguousMatch``.
"""


class ProbeError(Exception):
    """Base class for every probe failure."""


class OutOfRange(ProbeError):
    """Sector math would read past the partition or the image."""


class MalformedStructure(ProbeError):
    """A decoded field lies outside its documented legal range."""


class ChecksumMismatch(ProbeError):
    """Structure looks right but its stored checksum does not match."""

    def __init__(self, what: str, stored: int, computed: int):
        super().__init__(f"{what}: stored 0x{stored:08X}, computed 0x{computed:08X}")
        self.stored = stored
        self.computed = computed


class AmbiguousMatch(ProbeError):
    """More than one detector claims the same partition."""

    def __init__(self, candidates):
        self.candidates = tuple(candidates)
        super().__init__("partition claimed by " + ", ".join(self.candidates))
