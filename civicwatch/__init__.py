"""Civicwatch — duplicate-report detection and map marker selection."""
__version__ = "1.0.0"
