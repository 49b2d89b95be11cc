"""Cart abandonment lifecycle and reminder dispatch service."""

__version__ = "1.0.0"
