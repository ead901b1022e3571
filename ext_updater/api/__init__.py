"""
Repository API Layer.

This package handles all communication with the extension repository.
"""

from .client import RepositoryClient

__all__ = ["RepositoryClient"]
