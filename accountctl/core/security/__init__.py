"""Credential generation and secret redaction."""
