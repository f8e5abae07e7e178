# /flowgate/services/errors.py

from typing import Optional

# Error taxonomy of the Flow endpoint. Only the crypto, signature and
# unknown-action errors abort an exchange; everything else is absorbed into
# the encrypted screen that goes back to the client.


class FlowEndpointError(Exception):
    """Base class for errors raised while serving a Flow exchange."""
    status_code: int = 500


class DecryptionError(FlowEndpointError):
    """Key unwrap, tag check or JSON parse failed. The client refreshes its public key on 421."""
    status_code = 421


class EncryptionError(FlowEndpointError):
    status_code = 500


class SignatureError(FlowEndpointError):
    status_code = 401


class UnknownActionError(FlowEndpointError):
    status_code = 422

    def __init__(self, action: Optional[str]):
        super().__init__(f"Unknown action: {action}")
        self.action = action


class ServerConfigurationError(FlowEndpointError):
    """The channel secrets (app secret / private key) are not configured."""
    status_code = 422


class ConfigurationMissingError(FlowEndpointError):
    """No data configuration at all for the requested flow or screen."""
    status_code = 200


class IntegrationError(FlowEndpointError):
    """A component's data could not be fetched. Scoped to that component."""

    def __init__(
        self,
        message: str,
        integration_type: Optional[str] = None,
        component_name: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.integration_type = integration_type or "unknown"
        self.component_name = component_name or "unknown"
        self.cause = cause


class HttpFetchError(FlowEndpointError):
    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class ConnectionConfigError(ValueError):
    """A data-source connection is rejected at configuration time."""


class JSONPathResolutionWarning(UserWarning):
    """A JSONPath parameter mapping matched nothing; the default value is kept."""
