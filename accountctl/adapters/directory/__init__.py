"""Directory providers: Google Workspace and Microsoft 365."""
