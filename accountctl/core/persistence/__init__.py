"""Persistence — job store and audit ledger."""
