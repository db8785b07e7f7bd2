"""
Ownership registry for shared auxiliary resources.

A shared resource (for example a monitoring console ConfigMap) may be
referenced by several controller objects. Its owner set lives in
metadata.ownerReferences. The first owner creates the resource; removing
the last owner deletes it. Each owner may also list its peers in the
resource data; those entries follow the owner set in the same write.

Every owner set write is a compare-and-swap on metadata.resourceVersion.
Independent reconcilers, possibly in different processes, race on the same
record, so a ConflictError re-reads and retries with capped exponential
backoff instead of relying on any in-process lock.
"""

import logging
import random
import time
from dataclasses import dataclass, field
from typing import Optional, Set

from . import crd
from .errors import ConflictError, NotFoundError, TransientError
from .templates import merge_peers, owner_reference

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OwnerIdentity:
    """A controller object that references a shared resource.

    Identity is (kind, namespace, name); uid and api_version only feed the
    owner reference written to the platform.
    """

    kind: str
    namespace: str
    name: str
    uid: Optional[str] = field(default=None, compare=False)
    api_version: str = field(default=crd.API_VERSION, compare=False)

    def matches(self, reference):
        return reference.kind == self.kind and reference.name == self.name

    def __str__(self):
        return f"{self.kind} {self.namespace}/{self.name}"


class OwnershipRegistry:
    """Reference-counted lifecycle for shared resources."""

    def __init__(
        self,
        platform,
        build_manifest,
        max_retries=5,
        base_delay=0.1,
        max_delay=2.0,
        sleep=time.sleep,
    ):
        """
        Args:
            platform: PlatformClient used for all reads and writes.
            build_manifest: Callable (ref, owner, peers) -> body used when the
                first owner creates the resource.
            max_retries: Conflict retries before giving up with TransientError.
            base_delay: First backoff delay in seconds.
            max_delay: Backoff cap in seconds.
            sleep: Sleep function (injected by tests).
        """
        self.platform = platform
        self.build_manifest = build_manifest
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.sleep = sleep

    def get_by_name(self, ref):
        """Return the shared resource. Raises NotFoundError if absent."""
        return self.platform.get(ref)

    def owners(self, ref) -> Set[OwnerIdentity]:
        """Current owner identities of a shared resource."""
        try:
            resource = self.get_by_name(ref)
        except NotFoundError:
            return set()
        return {
            OwnerIdentity(r.kind, ref.namespace, r.name, r.uid, r.api_version)
            for r in resource.metadata.owner_references or []
        }

    def _backoff(self, attempt):
        delay = min(self.base_delay * (2 ** attempt), self.max_delay)
        # ±10% jitter so racing reconcilers drift apart
        self.sleep(delay * random.uniform(0.9, 1.1))

    def _retry(self, operation, ref, owner, action):
        for attempt in range(self.max_retries + 1):
            try:
                return operation(ref, owner)
            except ConflictError as e:
                if attempt == self.max_retries:
                    break
                logger.info(
                    f"Conflict on {ref.kind} {ref.name} while {action} {owner} "
                    f"(attempt {attempt + 1}): {e}"
                )
                self._backoff(attempt)
        raise TransientError(
            f"Gave up {action} {owner} on {ref.kind} {ref.namespace}/{ref.name} "
            f"after {self.max_retries + 1} attempts"
        )

    def add_owner(self, ref, owner, peers=None):
        """
        Add owner to the resource's owner set, creating the resource if absent.

        peers, when given, replaces the owner's peer entries in the resource
        data within the same write.
        """
        self._retry(lambda r, o: self._add_once(r, o, peers), ref, owner, "adding")

    def remove_owner(self, ref, owner):
        """Remove owner and its peers from the resource, deleting the resource if it empties."""
        self._retry(self._remove_once, ref, owner, "removing")

    def _add_once(self, ref, owner, peers):
        try:
            resource = self.platform.get(ref)
        except NotFoundError:
            logger.info(f"Creating {ref.kind} {ref.name} for first owner {owner}")
            # AlreadyExistsError is a ConflictError: the retry re-reads it
            self.platform.create(ref, self.build_manifest(ref, owner, peers))
            return

        references = list(resource.metadata.owner_references or [])
        data = resource.data or {}
        owned = any(owner.matches(r) for r in references)
        new_data = data if peers is None else merge_peers(data, owner, peers)
        if owned and new_data == data:
            logger.debug(f"{owner} already owns {ref.kind} {ref.name}")
            return

        if not owned:
            references.append(owner_reference(owner))
        resource.metadata.owner_references = references
        resource.data = new_data
        self.platform.replace(ref, resource)
        logger.info(f"Updated owner {owner} on {ref.kind} {ref.name}")

    def _remove_once(self, ref, owner):
        try:
            resource = self.platform.get(ref)
        except NotFoundError:
            logger.debug(f"{ref.kind} {ref.name} already gone")
            return

        references = list(resource.metadata.owner_references or [])
        remaining = [r for r in references if not owner.matches(r)]

        if not remaining:
            # Also covers an earlier pass that emptied the set but crashed before deleting
            logger.info(f"Deleting {ref.kind} {ref.name}: last owner {owner} removed")
            try:
                self.platform.delete(ref, resource_version=resource.metadata.resource_version)
            except NotFoundError:
                logger.debug(f"{ref.kind} {ref.name} deleted concurrently")
            return

        data = resource.data or {}
        new_data = merge_peers(data, owner, [])
        if len(remaining) == len(references) and new_data == data:
            logger.debug(f"{owner} does not own {ref.kind} {ref.name}")
            return

        resource.metadata.owner_references = remaining
        resource.data = new_data
        self.platform.replace(ref, resource)
        logger.info(f"Removed owner {owner} from {ref.kind} {ref.name}")
