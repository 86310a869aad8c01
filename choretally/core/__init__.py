"""Core infrastructure: configuration, logging, storage and scheduling."""
