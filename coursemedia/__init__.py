"""Video content processing backend for the course platform."""

__version__ = "0.1.0"
