from typing import List, Optional


class ApplicationError(Exception):
    """Base class for application-specific errors."""
    pass


class ValidationFailedError(ApplicationError):
    """Raised when supplied product fields are missing or invalid."""
    def __init__(self, fields: List[str], message: Optional[str] = None):
        self.fields = list(fields)
        if message is None:
            message = f"Invalid or missing fields: {', '.join(self.fields)}"
        super().__init__(message)


class ProductNotFoundError(ApplicationError):
    """Raised when a product is not found."""
    pass


class AdminDeniedError(ApplicationError):
    """Raised when a request lacks valid administrative authority."""
    def __init__(self, reason, message: Optional[str] = None):
        self.reason = reason
        super().__init__(message or f"Admin authorization denied: {reason.value}")


class MisconfiguredError(ApplicationError):
    """Raised at startup when the admin credential configuration is unusable."""
    pass


class StorageCorruptedError(ApplicationError):
    """Raised when the catalog file cannot be parsed as a product collection."""
    pass


class StorageError(ApplicationError):
    """Raised when the catalog could not be persisted."""
    def __init__(self, message="A storage error occurred.", original_exception=None):
        super().__init__(message)
        self.original_exception = original_exception


class TokenError(ApplicationError):
    """Base class for bearer token verification failures."""
    pass


class TokenMalformedError(TokenError):
    pass


class TokenExpiredError(TokenError):
    pass


class TokenSignatureError(TokenError):
    pass


class TokenIssuanceUnavailableError(ApplicationError):
    """Raised when a token is requested but no signing key is configured."""
    pass


class WriteSerializerClosedError(ApplicationError):
    """Raised for mutations submitted to, or still queued in, a closed serializer."""
    pass
