"""Custom exceptions for the evroc provider."""


class ProviderError(Exception):
    """Base exception for all evroc provider errors."""

    def __init__(self, message: str, details: str = None):
        """Initialize the exception.

        Args:
            message: Main error message
            details: Additional details or suggestions
        """
        self.message = message
        self.details = details
        super().__init__(self.format_message())

    def format_message(self) -> str:
        """Format the complete error message.

        Returns:
            Formatted error message with details
        """
        if self.details:
            return f"{self.message}\n\nDetails: {self.details}"
        return self.message


class ConfigurationError(ProviderError):
    """Exception raised for manager configuration errors."""

    pass


class CredentialsError(ProviderError):
    """Exception raised when the identity secret cannot be turned into a client."""

    pass


class CloudError(ProviderError):
    """Exception raised when an evroc API call fails.

    The API exception is chained as ``__cause__``.
    """

    pass


class BootstrapDataError(ProviderError):
    """Exception raised when a bootstrap data secret is malformed."""

    pass


class RegistryError(ProviderError):
    """Exception raised for resource kinds missing from a registry."""

    pass


class ReconcileError(ProviderError):
    """A reconciliation pass failed with a terminal or unclassified error.

    The underlying exception is chained as ``__cause__``.
    """

    pass
