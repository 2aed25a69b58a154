"""Stream Capture - keyword-driven scheduled capture of live broadcast streams."""

__version__ = "0.1.0"
