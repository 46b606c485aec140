"""Reconciliation engine: trip identity, stop update alignment, consistency checks, connections."""
