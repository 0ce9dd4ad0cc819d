"""Bridge domain exceptions."""

from __future__ import annotations


class BridgeError(Exception):
    """Base for bridge domain errors."""

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        details: dict[str, object] | None = None,
        original_error: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.details = details or {}
        self.original_error = original_error


class ConfigError(BridgeError):
    """Config load or validation failure. Raised before any resource is opened."""

    NOT_AN_OBJECT = "not_an_object"
    MISSING_PORT = "missing_port"
    LEGACY_CONFIG = "legacy_config"
    INVALID_BRIDGE_LOGIC = "invalid_bridge_logic"
    MISSING_REGISTRATION = "missing_registration"
    INVALID_REGISTRATION = "invalid_registration"


class RegistrationError(BridgeError):
    """Registration file could not be generated."""

    MISSING_URL = "missing_url"
    ALREADY_EXISTS = "already_exists"


class StoreInitError(BridgeError):
    """Persistent store failed to initialize."""


class BridgeStartupError(BridgeError):
    """Bridge logic failed to bind, init or run."""


class EventHandlerError(BridgeError):
    """A single inbound event could not be handled. Logged, never propagated."""


class HomeserverError(BridgeError):
    """Homeserver answered a client request with an error status. code is the Matrix errcode."""

    def __init__(
        self,
        message: str,
        *,
        status: int,
        code: str | None = None,
        details: dict[str, object] | None = None,
    ) -> None:
        super().__init__(message, code=code, details=details)
        self.status = status
