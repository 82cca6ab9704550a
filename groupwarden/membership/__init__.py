"""Membership mutation engine: retries, mutator, batches, join-request sweeps."""
