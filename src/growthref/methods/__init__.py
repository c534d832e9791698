"""
Registry of growth alert detectors.

Detectors register by subclassing BaseDetector; importing the method
modules below is enough to make them discoverable by name.
"""

from typing import Dict, Type

from .base import BaseDetector

# Import detector modules to register subclasses
from .deviation import detector as deviation_detector
from .trend import detector as trend_detector


def _build_registry() -> Dict[str, Type[BaseDetector]]:
    """Map method names to detector classes: SevereDeviationDetector -> 'severedeviation'."""
    registry = {}
    for cls in BaseDetector.__subclasses__():
        method_name = cls.__name__.replace("Detector", "").lower()
        registry[method_name] = cls
    return registry


registry = _build_registry()

__all__ = ["BaseDetector", "registry", "deviation_detector", "trend_detector"]
