"""aide -- self-hosted personal-assistant agent runtime."""

__version__ = "0.1.0"
