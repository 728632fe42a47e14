"""FrameRelay — iframe-embedding HTTP relay."""

__version__ = "1.0.0"
