"""
Defines custom exceptions for the application to allow for more specific error handling.
"""


class ExtUpdaterError(Exception):
    """Base exception for all application-specific errors."""


class ConfigurationError(ExtUpdaterError):
    """Raised for issues related to configuration or settings loading."""


class RepositoryError(ExtUpdaterError):
    """
    Raised when a request to the extension repository could not complete or
    returned a non-success status.
    """

    def __init__(self, message: str, status: int = 0):
        super().__init__(message)
        self.status = status


class ArtifactError(ExtUpdaterError):
    """Raised when a downloaded extension archive fails verification."""


class HostError(ExtUpdaterError):
    """Raised when the extension host cannot perform a requested operation."""
