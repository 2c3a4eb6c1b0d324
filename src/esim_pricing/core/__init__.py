"""Core subpackage - logging setup and shared error types."""
