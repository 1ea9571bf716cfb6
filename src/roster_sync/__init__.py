"""Roster Sync - replicate Clever roster data into per-school stores."""

__version__ = "0.1.0"
