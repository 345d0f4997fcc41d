#!/usr/bin/env python3
"""
Racecourse Operator for Kubernetes

Wires the reconciliation core into kopf: parent create/update/resume handlers,
a periodic re-verification timer and child watches that map back to the owning
Racecourse.
"""

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any

import kopf
from kubernetes import config as kube_config

from racecourse_operator._version import __version__
from racecourse_operator.config import OperatorConfig
from racecourse_operator.context import ReconcileContext, StopFlag
from racecourse_operator.controller import ReconcileResult, RacecourseController, owner_key
from racecourse_operator.errors import InvalidSpecError, RacecourseError
from racecourse_operator.models import ObjectKey
from racecourse_operator.store import DEPLOYMENT, INGRESS, SERVICE, KubernetesStore

config = OperatorConfig.load()

# Configure logging
logging.basicConfig(
    level=getattr(logging, config.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Initialized on startup
controller: RacecourseController | None = None


@dataclass
class _KeyLock:
    lock: threading.Lock = field(default_factory=threading.Lock)
    users: int = 0


# One pass at a time per parent; distinct parents run in parallel. An entry
# lives only while some caller holds or waits on it.
_key_locks: dict[ObjectKey, _KeyLock] = {}
_key_locks_guard = threading.Lock()

_CHILD_LABELS = dict(config.common_labels)


@contextmanager
def _serialized(key: ObjectKey, *, blocking: bool = True) -> Iterator[bool]:
    """Hold the pass lock for ``key``; yields False if it was busy and not waited on."""
    with _key_locks_guard:
        entry = _key_locks.setdefault(key, _KeyLock())
        entry.users += 1
    acquired = entry.lock.acquire(blocking=blocking)
    try:
        yield acquired
    finally:
        if acquired:
            entry.lock.release()
        with _key_locks_guard:
            entry.users -= 1
            if entry.users == 0:
                del _key_locks[key]


def backoff_delay(retry: int, settings: OperatorConfig) -> float:
    """Exponential delay before kopf retries a failed pass."""
    delay = settings.error_backoff_base * (2 ** max(retry, 0))
    return float(min(delay, settings.error_backoff_max))


def run_reconcile(
    key: ObjectKey, *, retry: int = 0, stopped: StopFlag | None = None, wait: bool = True
) -> ReconcileResult | None:
    """
    Run one pass for ``key`` and translate failures into kopf errors.

    With ``wait=False`` a pass already running for ``key`` is left to pick up
    the change and None is returned instead of queueing behind it.
    """
    if controller is None:
        raise kopf.TemporaryError(
            "Operator is not initialized yet", delay=config.error_backoff_base
        )

    ctx = ReconcileContext.with_timeout(config.reconcile_timeout, stopped=stopped)
    with _serialized(key, blocking=wait) as acquired:
        if not acquired:
            logger.debug("Pass for %s already running, skipping", key)
            return None
        try:
            result = controller.reconcile(key, ctx)
        except InvalidSpecError as e:
            logger.error("Not retrying %s: %s", key, e)
            raise kopf.PermanentError(str(e)) from e
        except RacecourseError as e:
            delay = backoff_delay(retry, config)
            logger.warning("Reconcile of %s failed, retrying in %.0fs: %s", key, delay, e)
            raise kopf.TemporaryError(str(e), delay=delay) from e

    if result.requeue_after is not None:
        logger.debug("%s reconciled, re-verifying in %.0fs", key, result.requeue_after)
    return result


def _load_kubernetes_config() -> None:
    try:
        kube_config.load_incluster_config()
        logger.info("Loaded in-cluster Kubernetes config")
    except kube_config.ConfigException:
        kube_config.load_kube_config()
        logger.info("Loaded local Kubernetes config")


@kopf.on.startup()
def startup_fn(settings: kopf.OperatorSettings, **_kwargs: Any) -> None:
    """Load cluster credentials, build the controller and tune kopf."""
    global controller

    logger.info("Racecourse Operator %s is starting up...", __version__)
    _load_kubernetes_config()
    controller = RacecourseController(KubernetesStore(), config)

    # Keep kopf's bookkeeping in annotations so status belongs to the ledger
    settings.persistence.progress_storage = kopf.AnnotationsProgressStorage(prefix=config.group)
    settings.batching.worker_limit = config.worker_limit
    settings.execution.max_workers = config.worker_limit

    logger.info("Worker limit: %d", config.worker_limit)
    logger.info("Re-verification interval: %.0fs", config.requeue_after)


@kopf.on.resume(config.group, config.version, config.plural)
@kopf.on.create(config.group, config.version, config.plural)
@kopf.on.update(config.group, config.version, config.plural)
def reconcile_racecourse(name: str, namespace: str, retry: int = 0, **_kwargs: Any) -> None:
    """Handle Racecourse creation, spec changes and operator restarts"""
    run_reconcile(ObjectKey(namespace, name), retry=retry)


@kopf.timer(
    config.group,
    config.version,
    config.plural,
    interval=config.requeue_after,
    initial_delay=config.requeue_after,
)
def reverify_racecourse(
    name: str, namespace: str, stopped: StopFlag, retry: int = 0, **_kwargs: Any
) -> None:
    """Periodically re-apply desired state to undo out-of-band drift"""
    run_reconcile(ObjectKey(namespace, name), retry=retry, stopped=stopped)


@kopf.on.event(DEPLOYMENT.group, DEPLOYMENT.version, DEPLOYMENT.plural, labels=_CHILD_LABELS)
@kopf.on.event(SERVICE.group, SERVICE.version, SERVICE.plural, labels=_CHILD_LABELS)
@kopf.on.event(INGRESS.group, INGRESS.version, INGRESS.plural, labels=_CHILD_LABELS)
def child_changed(body: kopf.Body, **_kwargs: Any) -> None:
    """Reconcile the owning Racecourse whenever one of its children changes"""
    key = owner_key(body, config)
    if key is None:
        return
    run_reconcile(key, wait=False)


def main() -> None:
    """Main entry point for the operator."""

    logger.info("Starting Racecourse Operator...")

    # An explicit namespace list wins over cluster-wide watching
    if config.namespaces:
        logger.info("Watching namespaces: %s", ", ".join(config.namespaces))

    kopf.run(
        clusterwide=config.clusterwide and not config.namespaces,
        namespaces=list(config.namespaces),
        liveness_endpoint=config.liveness_endpoint,
    )


if __name__ == "__main__":
    main()
