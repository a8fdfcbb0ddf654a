"""Reconcile pass scenarios against the in-memory host."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from fakes import FakeHostClient, get_vc
from vcmanager.constants import (
    CLUSTERVERSION_PLURAL,
    FINALIZER,
    LABEL_VC_READY_FOR_UPGRADE,
    LABEL_VC_UID,
    PKI_SECRET_NAMES,
    VIRTUALCLUSTER_PLURAL,
)
from vcmanager.controller.events import NullEventRecorder
from vcmanager.controller.reconciler import READINESS_POLL_SECONDS, Reconciler
from vcmanager.services.phase import Phase
from vcmanager.services.status_manager import load_status

MAX_PASSES = 10


def root_namespace(host: FakeHostClient) -> str:
    return load_status(get_vc(host)).clusterNamespace


def drive_to_running(reconciler: Reconciler, host: FakeHostClient):
    """Run passes, marking StatefulSets ready in between, until Running."""
    for _ in range(MAX_PASSES):
        result = reconciler.reconcile("default", "vc-sample")
        if result.phase == Phase.RUNNING and not result.requeue:
            return result
        ns = root_namespace(host)
        if ns:
            host.set_all_ready(ns)
    raise AssertionError("VirtualCluster never reached Running")


def condition(host: FakeHostClient, type: str):
    return load_status(get_vc(host)).get_condition(type)


def apiserver_args(host: FakeHostClient, ns: str, name: str) -> list[str]:
    sts = host.get("StatefulSet", ns, name)
    return sts["spec"]["template"]["spec"]["containers"][0]["args"]


def upgrade_cluster_version(host: FakeHostClient) -> None:
    """Prepend -v=7 to apiserver and controller-manager and label the apiserver Service."""
    cv = host.custom[(CLUSTERVERSION_PLURAL, None, "cv-sample")]
    for key in ("apiServer", "controllerManager"):
        container = cv["spec"][key]["statefulset"]["spec"]["template"]["spec"]["containers"][0]
        container["args"] = ["-v=7"] + container["args"]
    cv["spec"]["apiServer"]["service"]["metadata"]["labels"]["test-label"] = "test"


def set_upgrade_label(host: FakeHostClient) -> None:
    host.patch_custom(
        VIRTUALCLUSTER_PLURAL, "default", "vc-sample",
        {"metadata": {"labels": {LABEL_VC_READY_FOR_UPGRADE: "true"}}},
    )


class TestProvisioning:
    """First bring-up of a VirtualCluster."""

    @pytest.mark.unit
    def test_first_pass(self, reconciler: Reconciler, seeded_host: FakeHostClient) -> None:
        result = reconciler.reconcile("default", "vc-sample")

        vc = get_vc(seeded_host)
        status = load_status(vc)
        assert FINALIZER in vc["metadata"]["finalizers"]
        assert status.phase == Phase.CREATING.value
        assert status.clusterNamespace
        assert seeded_host.get("Namespace", None, status.clusterNamespace) is not None
        for name in PKI_SECRET_NAMES:
            assert seeded_host.get("Secret", status.clusterNamespace, name) is not None
        assert seeded_host.get("Service", status.clusterNamespace, "etcd") is not None
        assert seeded_host.get("Service", status.clusterNamespace, "apiserver-svc") is not None
        assert seeded_host.get("StatefulSet", status.clusterNamespace, "etcd") is not None
        assert result.requeue_after == READINESS_POLL_SECONDS

    @pytest.mark.unit
    def test_reaches_running(self, reconciler: Reconciler, seeded_host: FakeHostClient) -> None:
        result = drive_to_running(reconciler, seeded_host)

        ns = root_namespace(seeded_host)
        status = load_status(get_vc(seeded_host))
        assert result.requeue is False
        assert status.phase == Phase.RUNNING.value
        assert status.observedGeneration == 1
        assert status.appliedClusterVersionHash
        for name in ("etcd", "apiserver", "controller-manager"):
            assert seeded_host.get("StatefulSet", ns, name) is not None
        assert condition(seeded_host, "Ready").status == "True"
        assert condition(seeded_host, "PKIReady").status == "True"
        assert condition(seeded_host, "UpgradeAvailable").status == "False"

    @pytest.mark.unit
    def test_converged_pass_writes_nothing(
        self, reconciler: Reconciler, seeded_host: FakeHostClient
    ) -> None:
        drive_to_running(reconciler, seeded_host)
        seeded_host.reset_writes()

        result = reconciler.reconcile("default", "vc-sample")

        assert seeded_host.writes == []
        assert result.phase == Phase.RUNNING

    @pytest.mark.unit
    def test_root_namespace_is_stable(
        self, reconciler: Reconciler, seeded_host: FakeHostClient
    ) -> None:
        reconciler.reconcile("default", "vc-sample")
        first = root_namespace(seeded_host)

        drive_to_running(reconciler, seeded_host)

        assert root_namespace(seeded_host) == first

    @pytest.mark.unit
    def test_drift_is_corrected(self, reconciler: Reconciler, seeded_host: FakeHostClient) -> None:
        drive_to_running(reconciler, seeded_host)
        ns = root_namespace(seeded_host)
        seeded_host.objects[("StatefulSet", ns, "apiserver")]["spec"]["template"]["spec"][
            "containers"
        ][0]["args"] = ["--tampered"]

        reconciler.reconcile("default", "vc-sample")

        assert apiserver_args(seeded_host, ns, "apiserver")[0].startswith("--etcd-servers=")

    @pytest.mark.unit
    def test_lost_readiness_leaves_running(
        self, reconciler: Reconciler, seeded_host: FakeHostClient
    ) -> None:
        drive_to_running(reconciler, seeded_host)
        ns = root_namespace(seeded_host)
        seeded_host.set_statefulset_ready(ns, "etcd", ready=False)

        result = reconciler.reconcile("default", "vc-sample")

        assert result.phase == Phase.CREATING
        assert condition(seeded_host, "ControlPlaneReady").message == "etcd"

    @pytest.mark.unit
    def test_missing_services_keep_it_from_running(
        self, reconciler: Reconciler, seeded_host: FakeHostClient
    ) -> None:
        drive_to_running(reconciler, seeded_host)
        apply_bundle = reconciler.resources.apply_bundle

        def without_services(*args, **kwargs):
            result = apply_bundle(*args, **kwargs)
            result.services.clear()
            return result

        reconciler.resources.apply_bundle = without_services

        result = reconciler.reconcile("default", "vc-sample")

        assert result.phase == Phase.CREATING
        assert result.requeue_after == READINESS_POLL_SECONDS
        assert condition(seeded_host, "Ready").status == "False"

    @pytest.mark.unit
    def test_missing_object_is_done(self, reconciler: Reconciler) -> None:
        result = reconciler.reconcile("default", "does-not-exist")

        assert result.requeue is False


class TestUpgrade:
    """ClusterVersion rollouts."""

    @pytest.mark.unit
    def test_change_without_label_only_flags_availability(
        self, reconciler: Reconciler, seeded_host: FakeHostClient
    ) -> None:
        drive_to_running(reconciler, seeded_host)
        ns = root_namespace(seeded_host)
        upgrade_cluster_version(seeded_host)
        seeded_host.reset_writes()

        result = reconciler.reconcile("default", "vc-sample")

        assert seeded_host.writes_for("StatefulSet") == []
        assert seeded_host.writes_for("Service") == []
        assert apiserver_args(seeded_host, ns, "apiserver")[0] != "-v=7"
        assert condition(seeded_host, "UpgradeAvailable").status == "True"
        assert result.phase == Phase.RUNNING

    @pytest.mark.unit
    def test_labelled_upgrade_rolls_out(
        self, reconciler: Reconciler, seeded_host: FakeHostClient
    ) -> None:
        drive_to_running(reconciler, seeded_host)
        ns = root_namespace(seeded_host)
        old_hash = load_status(get_vc(seeded_host)).appliedClusterVersionHash
        upgrade_cluster_version(seeded_host)
        set_upgrade_label(seeded_host)
        seeded_host.reset_writes()

        result = reconciler.reconcile("default", "vc-sample")

        vc = get_vc(seeded_host)
        assert result.phase == Phase.UPGRADING
        assert load_status(vc).appliedClusterVersionHash != old_hash
        assert LABEL_VC_READY_FOR_UPGRADE not in (vc["metadata"].get("labels") or {})
        assert apiserver_args(seeded_host, ns, "apiserver")[0] == "-v=7"
        assert apiserver_args(seeded_host, ns, "controller-manager")[0] == "-v=7"
        svc = seeded_host.get("Service", ns, "apiserver-svc")
        assert svc["metadata"]["labels"]["test-label"] == "test"
        patched = {w[3] for w in seeded_host.writes_for("StatefulSet")}
        assert patched == {"apiserver", "controller-manager"}

        seeded_host.set_all_ready(ns)
        result = reconciler.reconcile("default", "vc-sample")

        assert result.phase == Phase.RUNNING
        assert result.requeue is False

    @pytest.mark.unit
    def test_label_without_change_is_consumed(
        self, reconciler: Reconciler, seeded_host: FakeHostClient
    ) -> None:
        drive_to_running(reconciler, seeded_host)
        set_upgrade_label(seeded_host)
        seeded_host.reset_writes()

        result = reconciler.reconcile("default", "vc-sample")

        assert result.phase == Phase.RUNNING
        assert seeded_host.writes_for("StatefulSet") == []
        labels = get_vc(seeded_host)["metadata"].get("labels") or {}
        assert LABEL_VC_READY_FOR_UPGRADE not in labels


class TestDeletion:
    """Finalizer-gated teardown."""

    @pytest.mark.unit
    def test_delete_before_running(
        self, reconciler: Reconciler, seeded_host: FakeHostClient
    ) -> None:
        reconciler.reconcile("default", "vc-sample")
        ns = root_namespace(seeded_host)
        seeded_host.mark_deleting(VIRTUALCLUSTER_PLURAL, "default", "vc-sample")

        result = reconciler.reconcile("default", "vc-sample")

        assert result.phase == Phase.TERMINATING
        assert result.requeue is False
        assert seeded_host.get("Namespace", None, ns) is None
        assert get_vc(seeded_host) is None

    @pytest.mark.unit
    def test_terminating_is_recorded_before_teardown(
        self, reconciler: Reconciler, seeded_host: FakeHostClient
    ) -> None:
        drive_to_running(reconciler, seeded_host)
        seeded_host.mark_deleting(VIRTUALCLUSTER_PLURAL, "default", "vc-sample")
        reconciler.deleter = MagicMock()

        result = reconciler.reconcile("default", "vc-sample")

        assert result.phase == Phase.TERMINATING
        assert load_status(get_vc(seeded_host)).phase == Phase.TERMINATING.value
        reconciler.deleter.teardown.assert_called_once()

    @pytest.mark.unit
    def test_delete_running(self, reconciler: Reconciler, seeded_host: FakeHostClient) -> None:
        drive_to_running(reconciler, seeded_host)
        ns = root_namespace(seeded_host)
        seeded_host.mark_deleting(VIRTUALCLUSTER_PLURAL, "default", "vc-sample")

        reconciler.reconcile("default", "vc-sample")

        assert seeded_host.get("StatefulSet", ns, "etcd") is None
        assert get_vc(seeded_host) is None


class TestFailures:
    """Configuration errors and invariant violations."""

    @pytest.mark.unit
    def test_missing_cluster_version_reaches_error_after_threshold(
        self, reconciler: Reconciler, seeded_host: FakeHostClient
    ) -> None:
        del seeded_host.custom[(CLUSTERVERSION_PLURAL, None, "cv-sample")]

        results = [reconciler.reconcile("default", "vc-sample") for _ in range(3)]

        assert [r.requeue for r in results] == [True, True, False]
        assert all(r.requeue_after is None for r in results[:2])
        status = load_status(get_vc(seeded_host))
        assert status.phase == Phase.ERROR.value
        assert status.reason == "ClusterVersionNotFound"
        assert status.configErrorCount == 3

    @pytest.mark.unit
    def test_below_threshold_phase_is_kept(
        self, reconciler: Reconciler, seeded_host: FakeHostClient
    ) -> None:
        del seeded_host.custom[(CLUSTERVERSION_PLURAL, None, "cv-sample")]

        reconciler.reconcile("default", "vc-sample")

        status = load_status(get_vc(seeded_host))
        assert status.phase == Phase.CREATING.value
        assert status.configErrorCount == 1

    @pytest.mark.unit
    def test_error_is_left_once_fixed(
        self, reconciler: Reconciler, seeded_host: FakeHostClient, cluster_version: dict
    ) -> None:
        del seeded_host.custom[(CLUSTERVERSION_PLURAL, None, "cv-sample")]
        for _ in range(3):
            reconciler.reconcile("default", "vc-sample")
        seeded_host.add_custom(CLUSTERVERSION_PLURAL, cluster_version)

        drive_to_running(reconciler, seeded_host)

        status = load_status(get_vc(seeded_host))
        assert status.reason is None
        assert status.configErrorCount == 0

    @pytest.mark.unit
    def test_namespace_collision_is_terminal(
        self, reconciler: Reconciler, seeded_host: FakeHostClient
    ) -> None:
        reconciler.reconcile("default", "vc-sample")
        ns = root_namespace(seeded_host)
        seeded_host.objects[("Namespace", None, ns)]["metadata"]["labels"][LABEL_VC_UID] = "other"

        result = reconciler.reconcile("default", "vc-sample")

        assert result.requeue is False
        status = load_status(get_vc(seeded_host))
        assert status.phase == Phase.ERROR.value
        assert status.reason == "NamespaceCollision"

    @pytest.mark.unit
    def test_transient_error_backs_off(
        self, reconciler: Reconciler, seeded_host: FakeHostClient
    ) -> None:
        seeded_host.fail_status_writes = 3

        result = reconciler.reconcile("default", "vc-sample")

        assert result.requeue is True
        assert result.requeue_after is None
        assert result.error is not None


class TestServerDefaults:
    """Objects read back without their zero-valued fields."""

    @pytest.mark.unit
    def test_omitted_zero_fields_do_not_cause_patches(
        self, cluster_version: dict, virtual_cluster: dict, config, issuer
    ) -> None:
        etcd_pod = cluster_version["spec"]["etcd"]["statefulset"]["spec"]["template"]["spec"]
        etcd_pod["hostNetwork"] = False
        etcd_pod["containers"][0]["volumeMounts"] = [
            {"name": "data", "mountPath": "/var/lib/etcd", "readOnly": False}
        ]
        api_pod = cluster_version["spec"]["apiServer"]["statefulset"]["spec"]["template"]["spec"]
        api_pod["containers"][0]["command"] = []
        api_pod["terminationGracePeriodSeconds"] = 0
        cluster_version["spec"]["apiServer"]["service"]["metadata"]["annotations"] = {}
        host = FakeHostClient(omit_empty=True)
        host.add_custom(CLUSTERVERSION_PLURAL, cluster_version)
        host.add_custom(VIRTUALCLUSTER_PLURAL, virtual_cluster)
        reconciler = Reconciler(host, config=config, issuer=issuer, events=NullEventRecorder())

        drive_to_running(reconciler, host)
        ns = root_namespace(host)
        assert "hostNetwork" not in host.get("StatefulSet", ns, "etcd")["spec"]["template"]["spec"]
        host.reset_writes()

        result = reconciler.reconcile("default", "vc-sample")

        assert host.writes == []
        assert result.phase == Phase.RUNNING
