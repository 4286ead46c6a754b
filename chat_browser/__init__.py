"""Remote Chromium browser driven through chat commands."""

__version__ = "0.1.0"
