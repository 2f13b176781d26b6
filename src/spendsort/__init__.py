"""spendsort: rule-driven transaction classification with interactive confirmation."""

__version__ = "0.1.0"
