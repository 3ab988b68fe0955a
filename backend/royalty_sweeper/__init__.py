"""Royalty Sweeper - CVN-1 royalty escrow sweeper."""

__version__ = "0.1.0"
