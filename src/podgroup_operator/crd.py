"""CRD schema constants and helpers."""

from enum import Enum

# CRD Group and Version
GROUP = "enterprise.podgroup.io"
VERSION = "v1"

# API version string
API_VERSION = f"{GROUP}/{VERSION}"

# Tier identifiers
TIER_STANDALONE = "standalone"
TIER_INDEXER = "indexer"
TIER_SEARCH_HEAD = "search-head"

# Controller kinds: (plural, kind, tier)
TIER_KINDS = [
    ("standalones", "Standalone", TIER_STANDALONE),
    ("indexerclusters", "IndexerCluster", TIER_INDEXER),
    ("searchheadclusters", "SearchHeadCluster", TIER_SEARCH_HEAD),
]

# Labels
LABEL_MANAGED_BY = "app.kubernetes.io/managed-by"
LABEL_INSTANCE = "app.kubernetes.io/instance"
LABEL_COMPONENT = "app.kubernetes.io/component"
MANAGED_BY = "podgroup-operator"

# Shared monitoring console resources
MONITORING_CONSOLE_SUFFIX = "monitoring-console"


class Phase(str, Enum):
    """Lifecycle phase of a pod group."""

    PENDING = "Pending"
    SCALING_UP = "ScalingUp"
    SCALING_DOWN = "ScalingDown"
    UPDATING = "Updating"
    READY = "Ready"
    ERROR = "Error"

    def __str__(self):
        return self.value


def statefulset_name(name, tier):
    """Name of the StatefulSet managed for a controller object."""
    return f"{name}-{tier}"


def pod_name(statefulset, ordinal):
    """Name of the pod holding the given ordinal."""
    return f"{statefulset}-{ordinal}"


def monitoring_console_name(ref_name):
    """Name of the shared monitoring console ConfigMap."""
    return f"{ref_name}-{MONITORING_CONSOLE_SUFFIX}"


def tier_for_kind(kind):
    """Tier managed by a controller kind."""
    for _plural, tier_kind, tier in TIER_KINDS:
        if tier_kind == kind:
            return tier
    return kind.lower()
