"""Kubernetes resource templates."""

import hashlib
import json

from kubernetes import client

from . import crd

TEMPLATE_HASH_ANNOTATION = f"{crd.GROUP}/template-hash"

_api_client = None


def _sanitize(obj):
    global _api_client
    if _api_client is None:
        _api_client = client.ApiClient()
    return _api_client.sanitize_for_serialization(obj)


def compute_template_hash(template):
    """Opaque revision hash of a pod template."""
    payload = json.dumps(_sanitize(template), sort_keys=True)
    return hashlib.sha256(payload.encode()).hexdigest()[:16]


def owner_reference(owner, controller=False):
    """Build an owner reference for an OwnerIdentity."""
    return client.V1OwnerReference(
        api_version=owner.api_version,
        kind=owner.kind,
        name=owner.name,
        uid=owner.uid,
        controller=controller,
        block_owner_deletion=False,
    )


def selector_labels(name, tier):
    """Labels identifying the pods of one controller object's tier."""
    return {
        crd.LABEL_MANAGED_BY: crd.MANAGED_BY,
        crd.LABEL_INSTANCE: name,
        crd.LABEL_COMPONENT: tier,
    }


def create_bootstrap_container(storage_client, app_source, mount_path):
    """Init container that syncs application packages onto the replica."""
    command = storage_client.get_bootstrap_command(
        app_source.get("endpoint", ""),
        app_source["bucket"],
        app_source.get("path", ""),
        mount_path,
    )
    return client.V1Container(
        name="init-apps",
        image=storage_client.get_bootstrap_image(),
        args=command,
        volume_mounts=[client.V1VolumeMount(name="init-apps", mount_path=mount_path)],
    )


def create_statefulset_manifest(
    name,
    namespace,
    tier,
    owner,
    image,
    replicas=1,
    volume_claims=None,
    bootstrap_container=None,
    app_mount_path="/init-apps",
):
    """Create the StatefulSet manifest for a controller object's tier."""
    sts_name = crd.statefulset_name(name, tier)
    labels = selector_labels(name, tier)

    volume_mounts = []
    volumes = []
    init_containers = None
    if bootstrap_container is not None:
        init_containers = [bootstrap_container]
        volumes.append(
            client.V1Volume(name="init-apps", empty_dir=client.V1EmptyDirVolumeSource())
        )
        volume_mounts.append(
            client.V1VolumeMount(name="init-apps", mount_path=app_mount_path)
        )

    claim_templates = []
    for claim_name, claim in sorted((volume_claims or {}).items()):
        volume_mounts.append(
            client.V1VolumeMount(
                name=f"pvc-{claim_name}",
                mount_path=claim.get("mountPath", f"/opt/{claim_name}"),
            )
        )
        claim_templates.append(
            client.V1PersistentVolumeClaim(
                metadata=client.V1ObjectMeta(name=f"pvc-{claim_name}", labels=labels),
                spec=client.V1PersistentVolumeClaimSpec(
                    access_modes=["ReadWriteOnce"],
                    storage_class_name=claim.get("storageClass"),
                    resources=client.V1VolumeResourceRequirements(
                        requests={"storage": claim.get("size", "10Gi")}
                    ),
                ),
            )
        )

    template = client.V1PodTemplateSpec(
        metadata=client.V1ObjectMeta(labels=labels),
        spec=client.V1PodSpec(
            init_containers=init_containers,
            containers=[
                client.V1Container(
                    name=tier,
                    image=image,
                    env=[client.V1EnvVar(name="SERVER_ROLE", value=tier)],
                    volume_mounts=volume_mounts or None,
                )
            ],
            volumes=volumes or None,
        ),
    )

    return client.V1StatefulSet(
        metadata=client.V1ObjectMeta(
            name=sts_name,
            namespace=namespace,
            labels=labels,
            annotations={TEMPLATE_HASH_ANNOTATION: compute_template_hash(template)},
            owner_references=[owner_reference(owner, controller=True)],
        ),
        spec=client.V1StatefulSetSpec(
            replicas=replicas,
            service_name=sts_name,
            selector=client.V1LabelSelector(match_labels=labels),
            template=template,
            volume_claim_templates=claim_templates or None,
        ),
    )


def peer_key(kind):
    """ConfigMap key listing the peers of every owner of a kind."""
    tier = crd.tier_for_kind(kind)
    return f"SPLUNK_{tier.upper().replace('-', '_')}_URL"


def _peer_suffix(owner):
    service = crd.statefulset_name(owner.name, crd.tier_for_kind(owner.kind))
    return service, f".{service}.{owner.namespace}.svc.cluster.local"


def peer_hosts(owner, replicas):
    """Stable DNS names of an owner's replicas."""
    service, suffix = _peer_suffix(owner)
    return [f"{crd.pod_name(service, ordinal)}{suffix}" for ordinal in range(replicas)]


def merge_peers(data, owner, hosts):
    """
    Return data with owner's peer entries replaced by hosts.

    Entries of other owners sharing the key are kept. An empty hosts list
    drops the owner's entries, and the key with them once nothing is left.
    """
    data = dict(data or {})
    key = peer_key(owner.kind)
    service, suffix = _peer_suffix(owner)
    entries = [
        host
        for host in (data.get(key) or "").split(",")
        if host and not (host.startswith(f"{service}-") and host.endswith(suffix))
    ]
    entries.extend(hosts)
    if entries:
        data[key] = ",".join(sorted(set(entries)))
    else:
        data.pop(key, None)
    return data


def create_monitoring_console_manifest(ref, owner, peers=None):
    """Create the shared monitoring console ConfigMap, owned by one controller object."""
    return client.V1ConfigMap(
        metadata=client.V1ObjectMeta(
            name=ref.name,
            namespace=ref.namespace,
            labels={
                crd.LABEL_MANAGED_BY: crd.MANAGED_BY,
                crd.LABEL_COMPONENT: crd.MONITORING_CONSOLE_SUFFIX,
            },
            owner_references=[owner_reference(owner)],
        ),
        data=merge_peers({}, owner, peers or []),
    )
