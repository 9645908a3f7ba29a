"""Azure ResourceManager exporter."""

__version__ = "1.0.0"
