"""Two-phase batch overwrite workflow with remembered processing status."""

__version__ = "0.1.0"