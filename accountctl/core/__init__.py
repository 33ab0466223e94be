"""Core — domain models, engine, persistence and configuration."""
