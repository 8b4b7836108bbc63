"""Configuration models."""

from .settings import ConnectionSettings
