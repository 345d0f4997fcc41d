"""
Error handling utilities and custom exceptions for the Racecourse operator
"""

import functools
import logging
from collections.abc import Callable
from typing import Any, TypeVar

from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError

F = TypeVar("F", bound=Callable[..., Any])

logger = logging.getLogger(__name__)


class RacecourseError(Exception):
    """Base exception for operator failures"""


class StoreError(RacecourseError):
    """Object store operation failed"""

    def __init__(
        self,
        message: str,
        operation: str,
        resource: str | None = None,
        status: int | None = None,
        reason: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.operation = operation
        self.resource = resource
        self.status = status
        self.reason = reason


class NotFoundError(StoreError):
    """Object does not exist"""


class ConflictError(StoreError):
    """Write rejected because the object changed since it was read"""


class StoreUnavailableError(StoreError):
    """Store could not be reached or did not answer in time"""


class ReconcileCancelled(RacecourseError):
    """Pass aborted because its context was cancelled or its deadline passed"""


class OwnershipError(RacecourseError):
    """Child object is already controlled by another owner"""


class InvalidSpecError(RacecourseError):
    """Parent spec failed validation and cannot converge until edited"""


class ChildReconcileError(RacecourseError):
    """A child resource could not be brought to its desired state"""

    def __init__(self, kind: str, resource: str, cause: Exception) -> None:
        super().__init__(f"Failed to reconcile {kind} {resource}: {cause}")
        self.kind = kind
        self.resource = resource
        self.cause = cause


def _resource_id(target: Any) -> str:
    """Describe an ObjectKey or an object body for log and error messages."""
    if isinstance(target, dict):
        metadata = target.get("metadata") or {}
        return f"{metadata.get('namespace')}/{metadata.get('name')}"
    return str(target)


def translate_api_errors(operation: str) -> Callable[[F], F]:
    """
    Decorator converting Kubernetes API and transport exceptions into store errors.

    The wrapped method must take ``(self, kind, target, ...)`` where ``target``
    is an ObjectKey or an object body.

    Args:
        operation: Description of the operation (e.g., "read", "update status")
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(self: Any, kind: Any, target: Any, *args: Any, **kwargs: Any) -> Any:
            try:
                return func(self, kind, target, *args, **kwargs)
            except ApiException as e:
                resource = f"{kind.kind}:{_resource_id(target)}"
                error_msg = f"Kubernetes API error while trying to {operation} {resource}"

                if e.status in (404, 409):
                    logger.info("%s: %s (%s)", error_msg, e.reason, e.status)
                elif e.status in (400, 401, 403):
                    logger.warning("%s: Client error (%s): %s", error_msg, e.status, e.reason)
                else:
                    logger.error("%s: Server error (%s): %s", error_msg, e.status, e.reason)
                    if e.body:
                        logger.error("Error details: %s", e.body)

                error_cls: type[StoreError] = StoreError
                if e.status == 404:
                    error_cls = NotFoundError
                elif e.status == 409:
                    error_cls = ConflictError

                raise error_cls(
                    message=f"Failed to {operation} {resource}: {e.reason}",
                    operation=operation,
                    resource=resource,
                    status=e.status,
                    reason=e.reason,
                ) from e
            except (HTTPError, OSError) as e:
                # No HTTP response at all: the request timed out or never connected
                resource = f"{kind.kind}:{_resource_id(target)}"
                logger.warning(
                    "Kubernetes API unreachable while trying to %s %s: %s", operation, resource, e
                )
                raise StoreUnavailableError(
                    message=f"Failed to {operation} {resource}: {e}",
                    operation=operation,
                    resource=resource,
                    reason=type(e).__name__,
                ) from e

        return wrapper  # type: ignore[return-value]

    return decorator
