"""Unit tests for status subresource writes."""

from __future__ import annotations

import pytest

from fakes import FakeHostClient, get_vc
from vcmanager.crd.base import CRDCondition
from vcmanager.errors import TransientError
from vcmanager.services.status_manager import MAX_CONFLICT_RETRIES, StatusManager, load_status


@pytest.fixture
def status_manager(seeded_host: FakeHostClient) -> StatusManager:
    return StatusManager(seeded_host)


class TestStatusManager:
    """Tests for StatusManager.update."""

    @pytest.mark.unit
    def test_writes_changes(self, status_manager: StatusManager, seeded_host: FakeHostClient) -> None:
        vc = get_vc(seeded_host)

        updated = status_manager.update(vc, lambda s: setattr(s, "phase", "Pending"))

        assert updated["status"]["phase"] == "Pending"
        assert load_status(get_vc(seeded_host)).phase == "Pending"

    @pytest.mark.unit
    def test_unchanged_status_skips_write(
        self, status_manager: StatusManager, seeded_host: FakeHostClient
    ) -> None:
        vc = status_manager.update(get_vc(seeded_host), lambda s: setattr(s, "phase", "Pending"))
        seeded_host.reset_writes()

        status_manager.update(vc, lambda s: setattr(s, "phase", "Pending"))

        assert seeded_host.writes == []

    @pytest.mark.unit
    def test_condition_timestamp_alone_is_not_a_change(
        self, status_manager: StatusManager, seeded_host: FakeHostClient
    ) -> None:
        def ready(s):
            s.set_condition(CRDCondition.build("Ready", True, "Running"))

        vc = status_manager.update(get_vc(seeded_host), ready)
        seeded_host.reset_writes()

        status_manager.update(vc, ready)

        assert seeded_host.writes == []

    @pytest.mark.unit
    def test_cluster_namespace_is_write_once(
        self, status_manager: StatusManager, seeded_host: FakeHostClient
    ) -> None:
        vc = status_manager.update(
            get_vc(seeded_host), lambda s: setattr(s, "clusterNamespace", "first")
        )

        vc = status_manager.update(vc, lambda s: setattr(s, "clusterNamespace", "second"))

        assert load_status(vc).clusterNamespace == "first"

    @pytest.mark.unit
    def test_cleared_fields_are_removed(
        self, status_manager: StatusManager, seeded_host: FakeHostClient
    ) -> None:
        def fail(s):
            s.reason = "ClusterVersionNotFound"
            s.message = "missing"

        def clear(s):
            s.reason = None
            s.message = None

        vc = status_manager.update(get_vc(seeded_host), fail)
        status_manager.update(vc, clear)

        status = get_vc(seeded_host)["status"]
        assert "reason" not in status
        assert "message" not in status

    @pytest.mark.unit
    def test_conflict_rereads_and_retries(
        self, status_manager: StatusManager, seeded_host: FakeHostClient
    ) -> None:
        seeded_host.fail_status_writes = 1

        status_manager.update(get_vc(seeded_host), lambda s: setattr(s, "phase", "Creating"))

        assert load_status(get_vc(seeded_host)).phase == "Creating"

    @pytest.mark.unit
    def test_stale_resource_version_conflicts(
        self, status_manager: StatusManager, seeded_host: FakeHostClient
    ) -> None:
        """A write computed from an old read is retried against the fresh object."""
        stale = get_vc(seeded_host)
        status_manager.update(get_vc(seeded_host), lambda s: setattr(s, "clusterNamespace", "ns"))

        status_manager.update(stale, lambda s: setattr(s, "phase", "Creating"))

        status = load_status(get_vc(seeded_host))
        assert status.phase == "Creating"
        assert status.clusterNamespace == "ns"

    @pytest.mark.unit
    def test_persistent_conflict_raises(
        self, status_manager: StatusManager, seeded_host: FakeHostClient
    ) -> None:
        seeded_host.fail_status_writes = MAX_CONFLICT_RETRIES

        with pytest.raises(TransientError):
            status_manager.update(get_vc(seeded_host), lambda s: setattr(s, "phase", "Creating"))
