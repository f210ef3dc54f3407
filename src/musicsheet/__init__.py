"""MusicSheet - a personal library for PDF sheet music."""

__version__ = "0.1.0"
