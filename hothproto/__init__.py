"""Hoth host command protocol: framing, checksums and device command helpers."""

__version__ = "0.1.0"