"""
Extension Host Layer.

This package holds the collaborator that owns installed extensions: it lists
them, replaces them from downloaded archives, and reports their lifecycle
changes through a notification channel.
"""

from .artifact import ArtifactChecker
from .base import ExtensionHost, StateChangeCallback
from .local import LocalExtensionHost

__all__ = [
    "ArtifactChecker",
    "ExtensionHost",
    "LocalExtensionHost",
    "StateChangeCallback",
]
