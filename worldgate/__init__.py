"""Usage-entitlement gate for the world-building editor."""

__version__ = "0.1.0"
