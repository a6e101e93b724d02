"""Logging, errors and metrics shared across the service."""
