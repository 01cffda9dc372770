"""Exceptions raised while validating a sampler configuration."""
from __future__ import annotations


class ConfigurationError(ValueError):
    """Invalid configuration; ``field`` names the offending option."""

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(f"{field}: {message}")


class DomainError(ConfigurationError):
    """A parameter value lies outside the domain of its transform."""
