"""Multi-seller marketplace order pipeline."""

__version__ = "0.1.0"
