"""devicetrust — trust evaluation engine for (user, device) pairings."""

__version__ = "0.1.0"
