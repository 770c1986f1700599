"""Screenshot a reMarkable tablet and crop it to the handwriting."""

__version__ = "0.2.0"
