"""Use cases — the operations the CLI and web API expose."""
