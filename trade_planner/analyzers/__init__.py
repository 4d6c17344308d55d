"""
Analyzer engines for the trade planner.

Each analyzer is an independent source of directional evidence.
The consensus builder combines their votes into one bias.
"""

from .volume_profile import VolumeProfileAnalyzer
from .microstructure import MicrostructureAnalyzer
from .patterns import PatternDetector, TrainingExample
from .harmonics import HarmonicPatternDetector

__all__ = [
    "VolumeProfileAnalyzer",
    "MicrostructureAnalyzer",
    "PatternDetector",
    "TrainingExample",
    "HarmonicPatternDetector",
]
