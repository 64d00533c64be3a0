"""covwatch: continuous build, test and coverage feedback for a watched source tree."""

__version__ = "0.1.0"
