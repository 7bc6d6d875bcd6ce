"""Event ticketing and access-badge console back end."""

__version__ = "0.1.0"
