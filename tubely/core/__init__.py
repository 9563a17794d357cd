"""Core module for configuration, storage and observability."""
