"""
Conflict-safe read-modify-write of child objects.

``create_or_update`` fetches (or initializes) an object, applies a mutation
function to a copy and writes only when the copy differs. ``retry_on_conflict``
repeats a whole fetch -> mutate -> write cycle when the store reports an
optimistic-concurrency conflict.
"""

import copy
import logging
from collections.abc import Callable
from enum import Enum
from typing import Any, TypeVar

import kopf
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from racecourse_operator.config import OperatorConfig
from racecourse_operator.context import ReconcileContext
from racecourse_operator.errors import (
    ConflictError,
    NotFoundError,
    OwnershipError,
    ReconcileCancelled,
    StoreUnavailableError,
)
from racecourse_operator.models import ObjectKey
from racecourse_operator.store import ResourceKind, Store

logger = logging.getLogger(__name__)

T = TypeVar("T")
MutateFn = Callable[[dict[str, Any]], None]

# Fields the API server sets when a pod template or container leaves them out
SERVER_DEFAULTED_FIELDS = frozenset(
    {
        # pod template
        "creationTimestamp",
        "dnsPolicy",
        "restartPolicy",
        "schedulerName",
        "securityContext",
        "terminationGracePeriodSeconds",
        # container
        "imagePullPolicy",
        "resources",
        "terminationMessagePath",
        "terminationMessagePolicy",
        # container and service ports
        "protocol",
    }
)


class OperationResult(str, Enum):
    """Outcome of a create-or-update"""

    UNCHANGED = "unchanged"
    CREATED = "created"
    UPDATED = "updated"


def merge_desired(current: Any, desired: Any) -> Any:
    """
    Overlay ``desired`` onto ``current``.

    Keys present in ``desired`` win. Of the keys only ``current`` has, just the
    ones the API server fills in (``SERVER_DEFAULTED_FIELDS``) are kept, so an
    already converged object compares equal while anything else added out of
    band is dropped. Lists of equal length merge element-wise, any other list
    is replaced.
    """
    if isinstance(desired, dict) and isinstance(current, dict):
        merged = {
            key: copy.deepcopy(value)
            for key, value in current.items()
            if key in SERVER_DEFAULTED_FIELDS and key not in desired
        }
        for key, value in desired.items():
            merged[key] = merge_desired(current.get(key), value)
        return merged
    if isinstance(desired, list) and isinstance(current, list) and len(desired) == len(current):
        return [merge_desired(c, d) for c, d in zip(current, desired, strict=True)]
    return copy.deepcopy(desired)


def ensure_controller_reference(owner: dict[str, Any], obj: dict[str, Any]) -> None:
    """Mark ``owner`` as the controller of ``obj`` so deleting it cascades."""
    owner_uid = owner["metadata"]["uid"]
    for ref in obj.get("metadata", {}).get("ownerReferences") or []:
        if ref.get("controller") and ref.get("uid") != owner_uid:
            raise OwnershipError(
                f"{obj.get('kind')} {obj['metadata'].get('name')} is already controlled by "
                f"{ref.get('kind')} {ref.get('name')}"
            )
    kopf.append_owner_reference(obj, owner=owner)


def ensure_labels(obj: dict[str, Any], labels: dict[str, str]) -> None:
    """Merge ``labels`` into the object's labels, keeping any other labels."""
    kopf.label(obj, labels, forced=True)


def _new_object(kind: ResourceKind, key: ObjectKey) -> dict[str, Any]:
    return {
        "apiVersion": kind.api_version,
        "kind": kind.kind,
        "metadata": {"namespace": key.namespace, "name": key.name},
    }


def _check_identity(obj: dict[str, Any], key: ObjectKey) -> None:
    metadata = obj.get("metadata") or {}
    if (metadata.get("namespace"), metadata.get("name")) != (key.namespace, key.name):
        raise ValueError(f"Mutation must not change object identity {key}")


def create_or_update(
    store: Store,
    kind: ResourceKind,
    key: ObjectKey,
    mutate: MutateFn,
    ctx: ReconcileContext,
) -> tuple[dict[str, Any], OperationResult]:
    """Make the stored object reflect ``mutate``, writing only on a difference."""
    ctx.raise_if_cancelled()
    try:
        current = store.get(kind, key, timeout=ctx.remaining())
    except NotFoundError:
        obj = _new_object(kind, key)
        mutate(obj)
        _check_identity(obj, key)
        ctx.raise_if_cancelled()
        return store.create(kind, obj, timeout=ctx.remaining()), OperationResult.CREATED

    desired = copy.deepcopy(current)
    mutate(desired)
    _check_identity(desired, key)
    if desired == current:
        return current, OperationResult.UNCHANGED

    ctx.raise_if_cancelled()
    return store.update(kind, desired, timeout=ctx.remaining()), OperationResult.UPDATED


def retry_on_conflict(fn: Callable[[], T], ctx: ReconcileContext, config: OperatorConfig) -> T:
    """
    Run ``fn`` again on ConflictError with exponential backoff.

    Other errors propagate immediately. When the attempt budget is exhausted the
    last ConflictError is re-raised; a cancelled context stops retrying. A
    request cut off by the pass deadline surfaces as ReconcileCancelled.
    """

    def attempt() -> T:
        ctx.raise_if_cancelled()
        return fn()

    retrying = Retrying(
        stop=stop_after_attempt(config.conflict_retry_attempts),
        wait=wait_exponential(
            multiplier=config.conflict_retry_initial_delay,
            max=config.conflict_retry_max_delay,
        ),
        retry=retry_if_exception_type(ConflictError),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    try:
        return retrying(attempt)
    except ConflictError as e:
        if ctx.cancelled:
            raise ReconcileCancelled(f"Cancelled while retrying conflict: {e}") from e
        raise
    except StoreUnavailableError as e:
        if ctx.cancelled:
            raise ReconcileCancelled(f"Cancelled while waiting on the store: {e}") from e
        raise


def apply_with_retry(
    store: Store,
    kind: ResourceKind,
    key: ObjectKey,
    mutate: MutateFn,
    ctx: ReconcileContext,
    config: OperatorConfig,
) -> tuple[dict[str, Any], OperationResult]:
    """create_or_update wrapped in the conflict retry budget."""
    return retry_on_conflict(lambda: create_or_update(store, kind, key, mutate, ctx), ctx, config)
