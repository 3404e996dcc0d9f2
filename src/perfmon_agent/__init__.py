"""perfmon_agent - Windows performance counter and WMI collection agent."""

__version__ = "0.1.0"
