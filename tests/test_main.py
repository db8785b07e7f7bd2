"""Tests for the kopf entrypoint glue."""

from unittest.mock import MagicMock

import kopf
import pytest

from podgroup_operator import main
from podgroup_operator.errors import (
    ConfigurationError,
    ConflictError,
    TransientError,
    UnrecoverableError,
)
from podgroup_operator.pod_manager import DecommissionPodManager, DefaultPodManager, get_registry

STATUS = {"phase": "Ready", "message": "1/1 replicas ready"}


class TestApplyResult:
    def test_success_writes_status(self):
        patch = MagicMock()

        main.apply_result(STATUS, None, patch)

        patch.status.update.assert_called_once_with(STATUS)

    @pytest.mark.parametrize("error", [TransientError("down"), ConflictError("stale")])
    def test_transient_errors_requeue(self, error):
        patch = MagicMock()

        with pytest.raises(kopf.TemporaryError):
            main.apply_result(STATUS, error, patch)
        patch.status.update.assert_called_once_with(STATUS)

    def test_configuration_error_is_permanent(self):
        patch = MagicMock()

        with pytest.raises(kopf.PermanentError):
            main.apply_result({"phase": "Error", "message": "bad"}, ConfigurationError("bad"), patch)
        patch.status.update.assert_called_once()

    def test_unrecoverable_is_reported_in_status_only(self):
        patch = MagicMock()

        main.apply_result({"phase": "Error", "message": "corrupt"}, UnrecoverableError("corrupt"), patch)

        patch.status.update.assert_called_once_with({"phase": "Error", "message": "corrupt"})


class TestRegistration:
    def test_builtin_tiers(self):
        main.register_pod_managers()
        registry = get_registry()

        assert registry.list_tiers() == ["indexer", "search-head", "standalone"]
        assert isinstance(registry.get("standalone"), DefaultPodManager)
        assert isinstance(registry.get("indexer"), DecommissionPodManager)

    def test_tier_handlers_reconcile_and_patch(self, monkeypatch):
        reconcile = MagicMock(return_value=(STATUS, None))
        monkeypatch.setattr(main, "reconcile_tier", reconcile)
        handler, _, _ = main.register_tier_handlers(
            "standalones", "Standalone", "standalone", registry=kopf.OperatorRegistry()
        )
        patch = MagicMock()

        handler(spec={"replicas": 1}, status={}, name="s1", namespace="test", uid="u", patch=patch)

        reconcile.assert_called_once_with({"replicas": 1}, {}, "s1", "test", "u", "Standalone", "standalone")
        patch.status.update.assert_called_once_with(STATUS)

    def test_delete_handler_requeues_on_failure(self, monkeypatch):
        monkeypatch.setattr(main, "release_tier", MagicMock(side_effect=TransientError("down")))
        _, _, delete = main.register_tier_handlers(
            "standalones", "Standalone", "standalone", registry=kopf.OperatorRegistry()
        )

        with pytest.raises(kopf.TemporaryError):
            delete(spec={}, status={}, name="s1", namespace="test", uid="u")
