"""Rule-driven mail routing."""

__version__ = "0.1.0"
