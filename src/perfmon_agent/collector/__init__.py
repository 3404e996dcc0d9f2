"""Counter sources, workers and the dispatcher."""

from __future__ import annotations

import sys

from .base import CounterSource
from .psutil_source import PsutilSource


def default_source(computer_name: str) -> CounterSource:
    """PDH/WMI on Windows, psutil everywhere else."""
    if sys.platform == "win32":
        from .windows import WindowsSource

        return WindowsSource(computer_name)
    return PsutilSource(host=computer_name)
