"""lottery-ops: pack UPC / POS sync and bulk lottery game import."""

__version__ = "0.1.0"
