"""Main operator entrypoint using Kopf."""

import logging

import kopf

from . import crd
from .config import get_config
from .errors import ConfigurationError, OperatorError, UnrecoverableError
from .k8s import init_clients
from .pod_manager import DecommissionPodManager, DefaultPodManager, get_registry
from .reconcile import reconcile_tier, release_tier

# Configure logging
logging.basicConfig(
    level=get_config().log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def register_pod_managers():
    """Register the built-in tiers' pod managers."""
    cfg = get_config()
    registry = get_registry()
    registry.register(crd.TIER_STANDALONE, DefaultPodManager())
    registry.register(crd.TIER_SEARCH_HEAD, DefaultPodManager())
    registry.register(
        crd.TIER_INDEXER,
        DecommissionPodManager(
            port=cfg.decommission_port, timeout=cfg.decommission_timeout
        ),
    )


@kopf.on.startup()
def startup(**kwargs):
    """Initialize clients and capabilities before any handler runs."""
    init_clients()
    register_pod_managers()


def apply_result(status_update, error, patch):
    """Write the status update and map the pass's error onto kopf's retry model."""
    patch.status.update(status_update)
    if error is None:
        return
    if isinstance(error, ConfigurationError):
        raise kopf.PermanentError(str(error))
    if isinstance(error, UnrecoverableError):
        # Surfaced through the Error phase; the timer re-checks it
        logger.error(f"Unrecoverable state: {error}")
        return
    raise kopf.TemporaryError(str(error), delay=get_config().requeue_delay)


def register_tier_handlers(plural, kind, tier, registry=None):
    """Register create/update, timer and delete handlers for one tier kind."""

    @kopf.on.create(crd.GROUP, crd.VERSION, plural, id=f"{plural}-reconcile", registry=registry)
    @kopf.on.update(crd.GROUP, crd.VERSION, plural, id=f"{plural}-reconcile", registry=registry)
    def tier_handler(spec, status, name, namespace, uid, patch, **kwargs):
        logger.info(f"Handling {kind} {name} in namespace {namespace}")
        status_update, error = reconcile_tier(spec, status, name, namespace, uid, kind, tier)
        apply_result(status_update, error, patch)

    @kopf.timer(
        crd.GROUP, crd.VERSION, plural,
        id=f"{plural}-timer",
        interval=get_config().reconcile_interval,
        registry=registry,
    )
    def tier_timer(spec, status, name, namespace, uid, patch, **kwargs):
        logger.debug(f"Timer reconciliation for {kind} {name} (phase: {status.get('phase')})")
        status_update, error = reconcile_tier(spec, status, name, namespace, uid, kind, tier)
        patch.status.update(status_update)
        if error is not None:
            logger.warning(f"Timer reconciliation of {kind} {name} incomplete: {error}")

    @kopf.on.delete(crd.GROUP, crd.VERSION, plural, id=f"{plural}-release", registry=registry)
    def tier_delete(spec, status, name, namespace, uid, **kwargs):
        logger.info(f"{kind} {name} deleted, releasing shared resources")
        # The StatefulSet is removed by owner-reference cascading deletion
        try:
            release_tier(spec, status, name, namespace, uid, kind)
        except OperatorError as e:
            raise kopf.TemporaryError(f"Release failed: {e}", delay=get_config().requeue_delay)

    return tier_handler, tier_timer, tier_delete


for _plural, _kind, _tier in crd.TIER_KINDS:
    register_tier_handlers(_plural, _kind, _tier)


if __name__ == "__main__":
    kopf.run()
