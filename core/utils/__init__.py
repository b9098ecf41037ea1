"""
Core Utilities Package

This package contains utility functions and helpers used throughout the pipeline.

Modules:
    - time: Clocks, timestamp conversion and window boundary helpers
"""

from core.utils.time import Clock, SystemClock, to_utc_datetime

__all__ = ["Clock", "SystemClock", "to_utc_datetime"]
