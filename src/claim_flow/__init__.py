"""Clinical document to NHCX claim bundle conversion."""

__version__ = "0.1.0"
