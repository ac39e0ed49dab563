from __future__ import annotations


class VendorError(Exception):
    """Base for failures that end a callback invocation early."""

    status_code = 500
    step = "unknown"


class InputValidationError(VendorError):
    status_code = 400
    step = "validate"


class UpstreamAuthError(VendorError):
    step = "exchange"


class IdentityResolutionError(VendorError):
    step = "exchange"


class CredentialIssuanceError(VendorError):
    step = "issue"


class DeliveryError(VendorError):
    step = "notify"

    def __init__(self, message: str, *, gone: bool = False) -> None:
        super().__init__(message)
        # Connection already closed on the client side.
        self.gone = gone


class ConfigError(Exception):
    """Raised at cold start when required environment is missing or invalid."""
