"""CLI module for groupwarden."""
