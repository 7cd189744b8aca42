"""Just Dogs training business platform."""

__version__ = "0.1.0"
