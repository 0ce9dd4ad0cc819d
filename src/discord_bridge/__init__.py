"""Matrix application service bridge for Discord."""

__version__ = "0.1.0"
