"""Core configuration, logging, error and scheduling primitives."""
