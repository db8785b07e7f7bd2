"""Operator error taxonomy and Kubernetes API error conversion."""

from kubernetes.client.rest import ApiException


class OperatorError(Exception):
    """Base class for errors raised by the reconciliation core."""


class TransientError(OperatorError):
    """Platform unavailable or raced; retry later."""


class ConflictError(TransientError):
    """Stale resource version on a write."""


class AlreadyExistsError(ConflictError):
    """Create raced with another writer."""


class NotFoundError(OperatorError):
    """Object does not exist. Expected during existence checks."""


class ConfigurationError(OperatorError):
    """Missing capability registration or malformed spec. Not retried."""


class UnrecoverableError(OperatorError):
    """Observed state cannot be interpreted."""


def convert_api_exception(e, action="request", target=None):
    """Translate an ApiException into an OperatorError."""
    subject = f"{action} {target}" if target else action
    message = f"{subject} failed: {e.status} {e.reason}"
    if e.status == 404:
        return NotFoundError(message)
    if e.status == 409:
        if action == "create":
            return AlreadyExistsError(message)
        return ConflictError(message)
    if e.status in (400, 403, 422):
        return ConfigurationError(message)
    return TransientError(message)
