"""Shared pytest fixtures for vcmanager tests."""

from __future__ import annotations

import pytest

from fakes import FakeHostClient, FakeIssuer, component
from vcmanager.config import OperatorConfig
from vcmanager.constants import CLUSTERVERSION_PLURAL, VIRTUALCLUSTER_PLURAL
from vcmanager.controller.events import NullEventRecorder
from vcmanager.controller.reconciler import Reconciler


@pytest.fixture
def cluster_version() -> dict:
    return {
        "apiVersion": "tenancy.x-k8s.io/v1alpha1",
        "kind": "ClusterVersion",
        "metadata": {"name": "cv-sample"},
        "spec": {
            "etcd": component("etcd", ["--data-dir=/var/lib/etcd"], port=2379),
            "apiServer": component(
                "kube-apiserver",
                ["--etcd-servers=https://etcd-0.etcd.{{ cluster_namespace }}:2379"],
                port=6443,
            ),
            "controllerManager": component(
                "kube-controller-manager", ["--kubeconfig=/etc/kubernetes/kubeconfig"]
            ),
        },
    }


@pytest.fixture
def virtual_cluster() -> dict:
    return {
        "apiVersion": "tenancy.x-k8s.io/v1alpha1",
        "kind": "VirtualCluster",
        "metadata": {
            "name": "vc-sample",
            "namespace": "default",
            "uid": "4f6d7c2a-0000-0000-0000-000000000001",
        },
        "spec": {"clusterVersionName": "cv-sample"},
    }


@pytest.fixture
def host() -> FakeHostClient:
    return FakeHostClient()


@pytest.fixture
def issuer() -> FakeIssuer:
    return FakeIssuer()


@pytest.fixture
def config() -> OperatorConfig:
    return OperatorConfig(error_retry_threshold=3)


@pytest.fixture
def seeded_host(
    host: FakeHostClient, cluster_version: dict, virtual_cluster: dict
) -> FakeHostClient:
    """Host holding the sample ClusterVersion and VirtualCluster."""
    host.add_custom(CLUSTERVERSION_PLURAL, cluster_version)
    host.add_custom(VIRTUALCLUSTER_PLURAL, virtual_cluster)
    return host


@pytest.fixture
def reconciler(
    seeded_host: FakeHostClient, config: OperatorConfig, issuer: FakeIssuer
) -> Reconciler:
    return Reconciler(seeded_host, config=config, issuer=issuer, events=NullEventRecorder())
