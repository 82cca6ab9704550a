"""Participant identity: identifier parsing, mapping cache, heuristics, resolution."""
