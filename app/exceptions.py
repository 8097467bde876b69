"""Custom exceptions for the Portfolio Refresh application."""


class PortfolioRefreshError(Exception):
    """Base exception for Portfolio Refresh."""

    pass


class NotFoundError(PortfolioRefreshError):
    """Raised when a requested resource is not found."""

    def __init__(self, resource_type: str, resource_id: int | str):
        self.resource_type = resource_type
        self.resource_id = resource_id
        super().__init__(f"{resource_type} with id {resource_id} not found")


class ValidationError(PortfolioRefreshError):
    """Raised when validation fails."""

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class ExternalAPIError(PortfolioRefreshError):
    """Raised when an external API call fails."""

    def __init__(
        self,
        message: str,
        api_name: str,
        status_code: int | None = None,
        response_body: str | None = None,
    ):
        self.api_name = api_name
        self.status_code = status_code
        self.response_body = response_body
        super().__init__(f"{api_name}: {message}")


class QuoteAuthorizationError(ExternalAPIError):
    """Raised when the quote source rejects freshly obtained credentials."""

    pass


class CredentialCacheError(PortfolioRefreshError):
    """Raised when the credential store cannot be read or written."""

    def __init__(self, message: str, original_error: Exception | None = None):
        self.original_error = original_error
        super().__init__(message)
