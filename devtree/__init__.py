"""Device tree model, property value data and semantic tree checks."""

__version__ = "0.1.0"