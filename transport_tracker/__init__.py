"""Grain transport tracking against release quotas."""

__version__ = "1.0.0"
