"""Concrete directory adapters."""
