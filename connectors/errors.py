"""
Error taxonomy for the connector subsystem.

State / validation errors abort before any side effect.  Authorization
rejections carry a human-readable reason the caller is expected to render.
Provider faults raised while invoking arbitrary operations never cross the
invocation boundary; they are converted to a ``False`` result there.
"""

from __future__ import annotations


class ConnectorError(Exception):
    """Base class for every error raised by the connector subsystem."""

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message


class ProviderNotAllowed(ConnectorError):
    def __init__(self, provider: str) -> None:
        super().__init__(f"Integration not allowed: {provider}")
        self.provider = provider


class MissingExternalUrl(ConnectorError):
    def __init__(self, provider: str) -> None:
        super().__init__(f"Missing external url for {provider}")
        self.provider = provider


class InvalidState(ConnectorError):
    """State token is unknown, expired, or was already consumed."""

    def __init__(self) -> None:
        super().__init__("Invalid state")


class InsufficientAuthorization(ConnectorError):
    """The provider rejected the handshake or returned the wrong account."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class TrialAbuseBlocked(ConnectorError):
    """A trialing organization tried to reconnect an account it already had."""

    def __init__(self, external_account_id: str) -> None:
        super().__init__("Payment required")
        self.external_account_id = external_account_id


class UnknownCredential(ConnectorError):
    def __init__(self, credential_id: str) -> None:
        super().__init__("Invalid integration")
        self.credential_id = credential_id


class UnknownOperation(ConnectorError):
    def __init__(self, operation: str) -> None:
        super().__init__("Function not found")
        self.operation = operation


class OperationFailed(ConnectorError):
    """
    Internal to ``InvocationEngine``: wraps a provider fault so the retry loop
    can tell it apart from ``RefreshTokenRequired``.  Never raised to callers;
    ``invoke`` turns it into ``False``.
    """


class RefreshFailed(ConnectorError):
    """
    Internal to ``InvocationEngine``: the credential could not be refreshed.
    Never raised to callers; ``invoke`` disables the channel and returns ``False``.
    """


class RefreshTokenRequired(Exception):
    """
    Raised by a provider operation when the stored access token is no longer
    accepted.  The invocation engine refreshes once and retries.
    """
