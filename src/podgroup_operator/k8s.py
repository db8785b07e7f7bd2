"""Kubernetes client helpers."""

import logging
from collections import namedtuple

from kubernetes import client, config
from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError

from .errors import TransientError, convert_api_exception

logger = logging.getLogger(__name__)

# Initialize clients
_v1 = None
_apps_v1 = None

ResourceRef = namedtuple("ResourceRef", ["kind", "namespace", "name"])

# kind -> (api group, method suffix)
_KIND_METHODS = {
    "StatefulSet": ("apps", "namespaced_stateful_set"),
    "ConfigMap": ("core", "namespaced_config_map"),
    "Pod": ("core", "namespaced_pod"),
    "PersistentVolumeClaim": ("core", "namespaced_persistent_volume_claim"),
}


def init_clients():
    """Initialize Kubernetes clients."""
    global _v1, _apps_v1

    try:
        config.load_incluster_config()
        logger.info("Loaded in-cluster Kubernetes config")
    except config.ConfigException:
        config.load_kube_config()
        logger.info("Loaded kubeconfig")

    _v1 = client.CoreV1Api()
    _apps_v1 = client.AppsV1Api()

    return _v1, _apps_v1


def get_clients():
    """Get initialized Kubernetes clients."""
    if _v1 is None or _apps_v1 is None:
        init_clients()
    return _v1, _apps_v1


class PlatformClient:
    """Create/get/replace/patch/delete access to namespaced objects.

    Every call is a single blocking request. ApiExceptions are converted into
    the operator error taxonomy; connection failures become TransientError.
    Writes through replace() and delete(resource_version=...) are
    optimistic: a stale version raises ConflictError.
    """

    def __init__(self, v1=None, apps_v1=None):
        if v1 is None or apps_v1 is None:
            v1, apps_v1 = get_clients()
        self.v1 = v1
        self.apps_v1 = apps_v1

    def _method(self, verb, kind):
        try:
            group, suffix = _KIND_METHODS[kind]
        except KeyError:
            raise ValueError(f"Unsupported kind: {kind}")
        api = self.apps_v1 if group == "apps" else self.v1
        return getattr(api, f"{verb}_{suffix}")

    def _call(self, action, ref, fn, **kwargs):
        try:
            return fn(**kwargs)
        except ApiException as e:
            raise convert_api_exception(e, action, f"{ref.kind} {ref.namespace}/{ref.name}")
        except HTTPError as e:
            raise TransientError(f"{action} {ref.kind} {ref.namespace}/{ref.name} failed: {e}")

    def get(self, ref):
        return self._call(
            "get", ref, self._method("read", ref.kind),
            name=ref.name, namespace=ref.namespace,
        )

    def create(self, ref, body):
        return self._call(
            "create", ref, self._method("create", ref.kind),
            namespace=ref.namespace, body=body,
        )

    def replace(self, ref, body):
        return self._call(
            "replace", ref, self._method("replace", ref.kind),
            name=ref.name, namespace=ref.namespace, body=body,
        )

    def patch(self, ref, body):
        return self._call(
            "patch", ref, self._method("patch", ref.kind),
            name=ref.name, namespace=ref.namespace, body=body,
        )

    def delete(self, ref, resource_version=None):
        """Delete an object, optionally only if it is still at resource_version."""
        options = None
        if resource_version:
            options = client.V1DeleteOptions(
                preconditions=client.V1Preconditions(resource_version=resource_version)
            )
        return self._call(
            "delete", ref, self._method("delete", ref.kind),
            name=ref.name, namespace=ref.namespace, body=options,
        )

    def list_pods(self, namespace, label_selector):
        """List pods matching a label selector."""
        ref = ResourceRef("Pod", namespace, label_selector)
        pods = self._call(
            "list", ref, self.v1.list_namespaced_pod,
            namespace=namespace, label_selector=label_selector,
        )
        return list(pods.items or [])


def selector_string(match_labels):
    """Render matchLabels as a label selector string."""
    return ",".join(f"{k}={v}" for k, v in sorted((match_labels or {}).items()))


def is_pod_ready(pod):
    """Whether the pod's Ready condition is True."""
    if pod.status is None:
        return False
    return any(
        c.type == "Ready" and c.status == "True"
        for c in (pod.status.conditions or [])
    )
