"""Probe configuration — library callers build it, the CLI maps flags onto it."""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class ProbeConfig:
    """Knobs for one probe run."""
    sector_size: int = 512          # Used when opening raw image files
    stop_at_first: bool = False     # False = try every detector, surface ambiguity
    formats: Optional[tuple[str, ...]] = None   # Allow-list of format ids (None = all)
    encoding: Optional[str] = None  # Text encoding override (None = detector default)
    use_mmap: bool = True

    def wants(self, format_id: str) -> bool:
        return self.formats is None or format_id in self.formats


DEFAULT_CONFIG = ProbeConfig()
