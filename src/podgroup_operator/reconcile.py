"""Core reconciliation logic for tier controller objects."""

import logging

from . import crd
from .config import get_config
from .errors import ConfigurationError, OperatorError
from .k8s import PlatformClient, ResourceRef
from .ownership import OwnerIdentity, OwnershipRegistry
from .pod_manager import get_registry
from .remote_storage import get_storage_client
from .statefulset import PhaseEngine
from .templates import (
    create_bootstrap_container,
    create_monitoring_console_manifest,
    create_statefulset_manifest,
    peer_hosts,
)

logger = logging.getLogger(__name__)


def get_ownership_registry(platform):
    """OwnershipRegistry for monitoring console resources."""
    cfg = get_config()
    return OwnershipRegistry(
        platform,
        create_monitoring_console_manifest,
        max_retries=cfg.owner_max_retries,
        base_delay=cfg.owner_base_delay,
        max_delay=cfg.owner_max_delay,
    )


def monitoring_console_ref(namespace, ref_name):
    return ResourceRef("ConfigMap", namespace, crd.monitoring_console_name(ref_name))


def validate_spec(spec):
    """Validate a controller spec. Returns the desired replica count."""
    replicas = spec.get("replicas", 1)
    if isinstance(replicas, bool) or not isinstance(replicas, int) or replicas < 0:
        raise ConfigurationError(f"Invalid replicas: {replicas!r}")

    app_source = spec.get("appRepository")
    if app_source is not None and not app_source.get("bucket"):
        raise ConfigurationError("appRepository.bucket is required")
    return replicas


def build_statefulset(spec, name, namespace, tier, owner):
    """Revised StatefulSet manifest for a controller object."""
    cfg = get_config()
    bootstrap = None
    app_source = spec.get("appRepository")
    if app_source:
        storage_client = get_storage_client(
            app_source.get("provider", "aws"),
            bucket=app_source["bucket"],
            prefix=app_source.get("path", ""),
            endpoint=app_source.get("endpoint", ""),
            region=app_source.get("region"),
        )
        bootstrap = create_bootstrap_container(storage_client, app_source, cfg.app_mount_path)

    return create_statefulset_manifest(
        name=name,
        namespace=namespace,
        tier=tier,
        owner=owner,
        image=spec.get("image") or cfg.default_image,
        volume_claims=spec.get("volumeClaims"),
        bootstrap_container=bootstrap,
        app_mount_path=cfg.app_mount_path,
    )


def sync_monitoring_console(registry, spec, status, owner, replicas):
    """
    Point the controller object's ownership at the monitoring console it references.

    The referenced console lists the object's replicas as peers; the
    console it moved away from drops them.

    Returns (recorded ref name, error). The recorded name only moves to the
    new reference once both the release and the add have succeeded, so a
    failed pass is repeated in full.
    """
    desired = (spec.get("monitoringConsoleRef") or {}).get("name")
    previous = status.get("monitoringConsoleRef")

    try:
        if previous and previous != desired:
            logger.info(f"{owner} no longer references monitoring console {previous}")
            registry.remove_owner(monitoring_console_ref(owner.namespace, previous), owner)
        if desired:
            registry.add_owner(
                monitoring_console_ref(owner.namespace, desired),
                owner,
                peers=peer_hosts(owner, replicas),
            )
    except OperatorError as e:
        logger.error(f"Failed to update monitoring console ownership for {owner}: {e}")
        return previous, e
    return desired, None


def reconcile_tier(spec, status, name, namespace, uid, kind, tier, platform=None):
    """
    Reconcile a tier controller object.

    Returns:
        (status_update, error) - the status to write on the controller object
        and the first error hit during the pass, or None.
    """
    status = status or {}
    owner = OwnerIdentity(kind, namespace, name, uid)

    try:
        replicas = validate_spec(spec)
        pod_manager = get_registry().get(tier)
        statefulset = build_statefulset(spec, name, namespace, tier, owner)
    except ConfigurationError as e:
        logger.error(f"{owner} is misconfigured: {e}")
        return {"phase": crd.Phase.ERROR.value, "message": str(e)}, e

    platform = platform or PlatformClient()
    result = PhaseEngine(platform).reconcile(statefulset, pod_manager, replicas)

    mc_name, mc_error = sync_monitoring_console(
        get_ownership_registry(platform), spec, status, owner, replicas
    )
    error = result.error or mc_error

    if result.phase == crd.Phase.ERROR:
        message = f"Unrecoverable pod group state: {result.error}"
    else:
        message = f"{result.ready_replicas}/{replicas} replicas ready"
        if error is not None:
            message += f" (retrying: {error})"

    status_update = {
        "phase": result.phase.value,
        "replicas": replicas,
        "readyReplicas": result.ready_replicas,
        "monitoringConsoleRef": mc_name,
        "message": message,
    }
    return status_update, error


def release_tier(spec, status, name, namespace, uid, kind, platform=None):
    """Drop a deleted controller object from every monitoring console it owns."""
    owner = OwnerIdentity(kind, namespace, name, uid)
    registry = get_ownership_registry(platform or PlatformClient())

    names = {(spec.get("monitoringConsoleRef") or {}).get("name")}
    names.add((status or {}).get("monitoringConsoleRef"))
    for ref_name in sorted(n for n in names if n):
        registry.remove_owner(monitoring_console_ref(namespace, ref_name), owner)
        logger.info(f"Released monitoring console {ref_name} for {owner}")
