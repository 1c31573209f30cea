"""
Logging package for tines.
Provides the root logger configuration used by applications embedding the supervisor.
"""
from .setup import setup_logging, MainFormatter

__all__ = ['setup_logging', 'MainFormatter']
