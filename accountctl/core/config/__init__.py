"""Configuration loading and static lookup tables."""
