"""PhonePe v2 payment-provider adapter."""

__version__ = "0.1.0"
