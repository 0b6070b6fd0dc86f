"""
Core module - Configuration, error taxonomy, and observability
"""

from .config import Config

__all__ = ['Config']
