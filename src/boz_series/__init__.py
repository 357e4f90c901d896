"""Boz Series - multi-disc TV series continuity for automated disc ripping."""

__version__ = "0.1.0"
