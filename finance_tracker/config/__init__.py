"""Configuration package for the finance tracker engine."""

from .settings import AppSettings, get_settings

__all__ = ["AppSettings", "get_settings"]
