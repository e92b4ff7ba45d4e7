"""Student concern submission, tracking and tiered review."""

__version__ = "1.0.0"
