"""Core configuration, persistence and shared primitives."""
