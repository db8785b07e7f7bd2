"""
Pod managers - per-tier hooks consulted while reconciling a pod group.

A pod manager decides whether an individual replica may be removed during
scale-down and runs any side effects a tier needs around replica lifecycle.
Tiers register a manager against their tier identifier at process start.
"""

import logging
from abc import ABC, abstractmethod
from typing import Dict

import requests

from .errors import ConfigurationError, TransientError

logger = logging.getLogger(__name__)

STATE_DECOMMISSIONED = "decommissioned"
STATE_DECOMMISSIONING = "decommissioning"


class PodManager(ABC):
    """Per-tier replica lifecycle hooks."""

    @abstractmethod
    def authorize_removal(self, ordinal: int, pod) -> bool:
        """
        Decide whether the replica at ordinal may be removed now.

        Must be idempotent: it is called again on every reconciliation pass
        until it returns True.

        Args:
            ordinal: Replica ordinal being removed.
            pod: The replica's V1Pod, or None if it was not observed.

        Returns:
            False while a decommission is still pending, True once safe.
        """
        pass

    def on_ready(self, ordinal: int, pod) -> None:
        """Hook called for each ready replica once the pod group is Ready."""
        return None


class DefaultPodManager(PodManager):
    """Pod manager for stateless tiers: removal is always authorized."""

    def authorize_removal(self, ordinal, pod):
        return True


class DecommissionPodManager(PodManager):
    """
    Pod manager for tiers that must evacuate a replica before removal.

    The replica exposes a management endpoint reporting its decommission
    state. Each call re-reads that state, so progress survives operator
    restarts and concurrent passes.

    Only replicas the engine removes itself are gated here. When the
    requested count drops below spec.replicas the StatefulSet is patched
    at once, and the platform terminates the pods above the new count
    without waiting for this handshake.
    """

    def __init__(
        self,
        port=8089,
        status_path="/services/decommission/status",
        decommission_path="/services/decommission",
        scheme="http",
        timeout=5.0,
        session=None,
    ):
        self.port = port
        self.status_path = status_path
        self.decommission_path = decommission_path
        self.scheme = scheme
        self.timeout = timeout
        self.session = session or requests.Session()

    def _url(self, pod_ip, path):
        return f"{self.scheme}://{pod_ip}:{self.port}{path}"

    def authorize_removal(self, ordinal, pod):
        pod_ip = pod.status.pod_ip if pod is not None and pod.status else None
        if not pod_ip:
            # Nothing running to evacuate
            logger.info(f"Replica {ordinal} has no pod IP, authorizing removal")
            return True

        try:
            resp = self.session.get(
                self._url(pod_ip, self.status_path), timeout=self.timeout
            )
            resp.raise_for_status()
            state = resp.json().get("state", "")
        except (requests.RequestException, ValueError) as e:
            raise TransientError(f"Decommission status check for replica {ordinal} failed: {e}")

        if state == STATE_DECOMMISSIONED:
            logger.info(f"Replica {ordinal} decommissioned, authorizing removal")
            return True
        if state == STATE_DECOMMISSIONING:
            logger.info(f"Replica {ordinal} still decommissioning")
            return False

        try:
            resp = self.session.post(
                self._url(pod_ip, self.decommission_path), timeout=self.timeout
            )
            resp.raise_for_status()
        except requests.RequestException as e:
            raise TransientError(f"Decommission request for replica {ordinal} failed: {e}")
        logger.info(f"Requested decommission of replica {ordinal}")
        return False


class PodManagerRegistry:
    """Pod managers keyed by tier identifier."""

    def __init__(self):
        self._managers: Dict[str, PodManager] = {}

    def register(self, tier: str, manager: PodManager) -> None:
        if tier in self._managers:
            logger.warning(f"Overwriting existing pod manager for tier: {tier}")
        self._managers[tier] = manager
        logger.info(f"Registered pod manager {type(manager).__name__} for tier {tier}")

    def get(self, tier: str) -> PodManager:
        try:
            return self._managers[tier]
        except KeyError:
            raise ConfigurationError(f"No pod manager registered for tier '{tier}'")

    def list_tiers(self):
        return sorted(self._managers)


# Global registry instance
_registry = None


def get_registry() -> PodManagerRegistry:
    """Get the global pod manager registry."""
    global _registry
    if _registry is None:
        _registry = PodManagerRegistry()
    return _registry


def reset_registry() -> None:
    """Reset the global registry (mainly for testing)."""
    global _registry
    _registry = None
