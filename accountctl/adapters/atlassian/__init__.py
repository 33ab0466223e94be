"""Atlassian providers."""
