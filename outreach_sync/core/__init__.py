"""Core infrastructure: configuration and background job scheduling."""
