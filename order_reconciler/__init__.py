"""Order reconciliation service for merchant payments through an external gateway."""

__version__ = "0.1.0"
