"""Civic Desk - municipal problem reporting service."""

__version__ = "0.1.0"
