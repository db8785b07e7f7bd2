"""Pod group (StatefulSet) phase computation and convergence."""

import logging
import re
from dataclasses import dataclass
from typing import Optional

from .crd import Phase, pod_name
from .errors import NotFoundError, OperatorError, UnrecoverableError
from .k8s import ResourceRef, is_pod_ready, selector_string
from .templates import TEMPLATE_HASH_ANNOTATION

logger = logging.getLogger(__name__)


@dataclass
class PhaseResult:
    """Outcome of one pod group reconciliation pass.

    error is set when a platform call or pod manager hook failed; phase is
    still the phase that applies had the call succeeded.
    """

    phase: Phase
    error: Optional[OperatorError] = None
    replicas: int = 0
    ready_replicas: int = 0


def _template_hash(statefulset):
    annotations = statefulset.metadata.annotations or {}
    return annotations.get(TEMPLATE_HASH_ANNOTATION)


def _count(value, field):
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise UnrecoverableError(f"Invalid {field}: {value!r}")
    return value


def observed_counts(statefulset):
    """Return (replicas, ready_replicas, current_revision, update_revision)."""
    spec = statefulset.spec
    if spec is None:
        raise UnrecoverableError(f"StatefulSet {statefulset.metadata.name} has no spec")
    if spec.selector is None or not spec.selector.match_labels:
        raise UnrecoverableError(f"StatefulSet {statefulset.metadata.name} has no selector")

    # The platform defaults an unset replica count to 1
    replicas = 1 if spec.replicas is None else _count(spec.replicas, "spec.replicas")
    status = statefulset.status
    if status is None:
        return replicas, 0, "", ""
    ready = _count(status.ready_replicas, "status.readyReplicas")
    return replicas, ready, status.current_revision or "", status.update_revision or ""


class PhaseEngine:
    """Drives a StatefulSet toward a desired replica count and reports its phase."""

    def __init__(self, platform):
        self.platform = platform

    def reconcile(self, statefulset, pod_manager, desired_replicas):
        """
        Run one reconciliation pass for a pod group.

        Args:
            statefulset: Revised StatefulSet manifest (V1StatefulSet).
            pod_manager: PodManager for the pod group's tier.
            desired_replicas: Replica count requested by the controller object.

        Returns:
            PhaseResult
        """
        ref = ResourceRef(
            "StatefulSet", statefulset.metadata.namespace, statefulset.metadata.name
        )

        try:
            current = self.platform.get(ref)
        except NotFoundError:
            return self._create(ref, statefulset, desired_replicas)
        except OperatorError as e:
            logger.error(f"Error reading StatefulSet {ref.name}: {e}")
            return PhaseResult(Phase.PENDING, e)

        try:
            replicas, ready, current_rev, update_rev = observed_counts(current)
        except UnrecoverableError as e:
            logger.error(f"Cannot interpret StatefulSet {ref.name}: {e}")
            return PhaseResult(Phase.ERROR, e)

        error = self._apply_template(ref, current, statefulset)

        if desired_replicas != replicas:
            scale_error = self._scale(ref, replicas, desired_replicas)
            error = error or scale_error

        # Phase is decided from the counts observed before any patch above,
        # but only ordinals beyond the new target may be removed
        if ready > replicas:
            phase, step_error = Phase.SCALING_DOWN, self._scale_down(
                current, pod_manager, max(replicas, desired_replicas)
            )
        elif ready < replicas:
            phase, step_error = Phase.SCALING_UP, None
        elif current_rev != update_rev:
            phase, step_error = Phase.UPDATING, None
        else:
            phase, step_error = Phase.READY, self._finish(current, pod_manager)

        logger.info(
            f"StatefulSet {ref.name}: phase={phase} replicas={replicas} "
            f"ready={ready} desired={desired_replicas}"
        )
        return PhaseResult(phase, error or step_error, replicas, ready)

    def _create(self, ref, statefulset, desired_replicas):
        logger.info(f"Creating StatefulSet {ref.name} with {desired_replicas} replicas")
        statefulset.spec.replicas = desired_replicas
        try:
            self.platform.create(ref, statefulset)
        except OperatorError as e:
            logger.error(f"Failed to create StatefulSet {ref.name}: {e}")
            return PhaseResult(Phase.PENDING, e)
        return PhaseResult(Phase.PENDING, None, desired_replicas, 0)

    def _apply_template(self, ref, current, revised):
        """Replace the pod template when its hash changed."""
        target = _template_hash(revised)
        if target is None or target == _template_hash(current):
            return None

        logger.info(f"Updating pod template of StatefulSet {ref.name} to {target}")
        current.metadata.annotations = dict(current.metadata.annotations or {})
        current.metadata.annotations[TEMPLATE_HASH_ANNOTATION] = target
        current.spec.template = revised.spec.template
        try:
            self.platform.replace(ref, current)
        except OperatorError as e:
            logger.error(f"Failed to update template of StatefulSet {ref.name}: {e}")
            return e
        return None

    def _scale(self, ref, replicas, desired_replicas):
        logger.info(f"Scaling StatefulSet {ref.name} from {replicas} to {desired_replicas}")
        try:
            self.platform.patch(ref, {"spec": {"replicas": desired_replicas}})
        except OperatorError as e:
            logger.error(f"Failed to scale StatefulSet {ref.name}: {e}")
            return e
        return None

    def _pods_by_ordinal(self, statefulset):
        name = statefulset.metadata.name
        pattern = re.compile(rf"^{re.escape(name)}-(\d+)$")
        pods = self.platform.list_pods(
            statefulset.metadata.namespace,
            selector_string(statefulset.spec.selector.match_labels),
        )
        result = {}
        for pod in pods:
            match = pattern.match(pod.metadata.name)
            if match:
                result[int(match.group(1))] = pod
        return result

    def _scale_down(self, statefulset, pod_manager, replicas):
        """Remove the highest ordinal beyond replicas once its tier allows it."""
        name = statefulset.metadata.name
        namespace = statefulset.metadata.namespace
        try:
            pods = self._pods_by_ordinal(statefulset)
        except OperatorError as e:
            logger.error(f"Failed to list pods of StatefulSet {name}: {e}")
            return e

        excess = [ordinal for ordinal in pods if ordinal >= replicas]
        if not excess:
            logger.debug(f"StatefulSet {name} has no pods beyond ordinal {replicas - 1}")
            return None
        ordinal = max(excess)
        pod = pods[ordinal]

        try:
            authorized = pod_manager.authorize_removal(ordinal, pod)
        except OperatorError as e:
            logger.error(f"Pod manager failed for {pod.metadata.name}: {e}")
            return e
        if not authorized:
            logger.info(f"Removal of {pod.metadata.name} not yet authorized")
            return None

        logger.info(f"Removing replica {pod.metadata.name}")
        refs = [ResourceRef("Pod", namespace, pod.metadata.name)]
        for template in statefulset.spec.volume_claim_templates or []:
            refs.append(
                ResourceRef(
                    "PersistentVolumeClaim",
                    namespace,
                    f"{template.metadata.name}-{pod_name(name, ordinal)}",
                )
            )
        for ref in refs:
            try:
                self.platform.delete(ref)
            except NotFoundError:
                logger.debug(f"{ref.kind} {ref.name} already gone")
            except OperatorError as e:
                logger.error(f"Failed to delete {ref.kind} {ref.name}: {e}")
                return e
        return None

    def _finish(self, statefulset, pod_manager):
        """Run the pod manager's ready hook for each ready replica."""
        try:
            pods = self._pods_by_ordinal(statefulset)
            for ordinal in sorted(pods):
                if is_pod_ready(pods[ordinal]):
                    pod_manager.on_ready(ordinal, pods[ordinal])
        except OperatorError as e:
            logger.error(f"Ready hook failed for StatefulSet {statefulset.metadata.name}: {e}")
            return e
        return None
