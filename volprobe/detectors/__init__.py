from .base import Detector, LayoutDetector, Media
from .amiga import AmigaDetector
from .acorn import AcornDetector
from .hfs import HfsDetector, HfsPlusDetector
from .prodos import ProdosDetector
from .ext2 import ext2_detector
from .sysv import SysvDetector
from .ufs import UfsDetector
from .iso9660 import Iso9660Detector
from .fat import FatDetector

__all__ = [
    "Detector", "LayoutDetector", "Media",
    "AmigaDetector", "AcornDetector", "HfsDetector", "HfsPlusDetector",
    "ProdosDetector", "ext2_detector", "SysvDetector", "UfsDetector",
    "Iso9660Detector", "FatDetector",
]
