"""Tests for resource manifests."""

from unittest.mock import MagicMock

from kubernetes import client

from fakes import make_owner
from podgroup_operator.k8s import ResourceRef
from podgroup_operator.templates import (
    TEMPLATE_HASH_ANNOTATION,
    compute_template_hash,
    create_bootstrap_container,
    create_monitoring_console_manifest,
    create_statefulset_manifest,
    merge_peers,
    peer_hosts,
    peer_key,
)


def build(**overrides):
    kwargs = dict(
        name="stack1",
        namespace="test",
        tier="indexer",
        owner=make_owner("stack1", kind="IndexerCluster"),
        image="splunk/splunk:9.1",
    )
    kwargs.update(overrides)
    return create_statefulset_manifest(**kwargs)


class TestStatefulSetManifest:
    def test_identity_and_selector(self):
        sts = build(replicas=3)

        assert sts.metadata.name == "stack1-indexer"
        assert sts.spec.replicas == 3
        assert sts.spec.selector.match_labels == sts.spec.template.metadata.labels
        assert sts.spec.template.spec.containers[0].image == "splunk/splunk:9.1"

    def test_controller_owner_reference(self):
        ref = build().metadata.owner_references[0]

        assert ref.kind == "IndexerCluster"
        assert ref.name == "stack1"
        assert ref.controller is True

    def test_template_hash_annotation_tracks_template(self):
        a = build()
        b = build()
        c = build(image="splunk/splunk:9.2")

        assert a.metadata.annotations[TEMPLATE_HASH_ANNOTATION] == b.metadata.annotations[TEMPLATE_HASH_ANNOTATION]
        assert a.metadata.annotations[TEMPLATE_HASH_ANNOTATION] != c.metadata.annotations[TEMPLATE_HASH_ANNOTATION]
        assert compute_template_hash(a.spec.template) == a.metadata.annotations[TEMPLATE_HASH_ANNOTATION]

    def test_replica_count_does_not_change_hash(self):
        assert (
            build(replicas=1).metadata.annotations[TEMPLATE_HASH_ANNOTATION]
            == build(replicas=5).metadata.annotations[TEMPLATE_HASH_ANNOTATION]
        )

    def test_volume_claims(self):
        sts = build(volume_claims={"var": {"size": "100Gi", "storageClass": "gp3"}})

        claim = sts.spec.volume_claim_templates[0]
        assert claim.metadata.name == "pvc-var"
        assert isinstance(claim.spec.resources, client.V1VolumeResourceRequirements)
        assert claim.spec.resources.requests == {"storage": "100Gi"}
        assert claim.spec.storage_class_name == "gp3"
        mounts = sts.spec.template.spec.containers[0].volume_mounts
        assert mounts[0].mount_path == "/opt/var"

    def test_bootstrap_init_container(self):
        storage = MagicMock()
        storage.get_bootstrap_image.return_value = "amazon/aws-cli"
        storage.get_bootstrap_command.return_value = ["s3", "sync", "s3://apps/x/", "/init-apps/"]
        container = create_bootstrap_container(
            storage, {"bucket": "apps", "path": "x", "endpoint": "e"}, "/init-apps"
        )

        sts = build(bootstrap_container=container)

        init = sts.spec.template.spec.init_containers[0]
        assert init.image == "amazon/aws-cli"
        assert init.args == ["s3", "sync", "s3://apps/x/", "/init-apps/"]
        storage.get_bootstrap_command.assert_called_once_with("e", "apps", "x", "/init-apps")
        assert sts.spec.template.spec.volumes[0].name == "init-apps"


class TestMonitoringConsoleManifest:
    def test_single_owner(self):
        ref = ResourceRef("ConfigMap", "test", "mc1-monitoring-console")

        cm = create_monitoring_console_manifest(ref, make_owner("stack1"))

        assert cm.metadata.name == "mc1-monitoring-console"
        assert cm.metadata.namespace == "test"
        assert [r.name for r in cm.metadata.owner_references] == ["stack1"]
        assert cm.metadata.owner_references[0].controller is False

    def test_first_owner_peers(self):
        ref = ResourceRef("ConfigMap", "test", "mc1-monitoring-console")
        owner = make_owner("idx1", kind="IndexerCluster")

        cm = create_monitoring_console_manifest(ref, owner, peers=peer_hosts(owner, 1))

        assert cm.data == {
            "SPLUNK_INDEXER_URL": "idx1-indexer-0.idx1-indexer.test.svc.cluster.local"
        }

    def test_without_peers_data_is_empty(self):
        ref = ResourceRef("ConfigMap", "test", "mc1-monitoring-console")

        assert create_monitoring_console_manifest(ref, make_owner("stack1")).data == {}


class TestPeers:
    def test_search_head_key(self):
        assert peer_key("SearchHeadCluster") == "SPLUNK_SEARCH_HEAD_URL"

    def test_merge_keeps_similarly_named_owner(self):
        one = make_owner("stack1")
        other = make_owner("stack1-standalone")
        data = merge_peers({}, other, peer_hosts(other, 1))

        data = merge_peers(data, one, peer_hosts(one, 1))
        data = merge_peers(data, one, [])

        assert data == {"SPLUNK_STANDALONE_URL": peer_hosts(other, 1)[0]}

    def test_emptied_key_is_dropped(self):
        owner = make_owner("stack1")
        data = merge_peers({"OTHER": "x"}, owner, peer_hosts(owner, 2))

        assert merge_peers(data, owner, []) == {"OTHER": "x"}
