"""RoofOps — multi-tenant roofing operations backend."""

__version__ = "1.0.0"
