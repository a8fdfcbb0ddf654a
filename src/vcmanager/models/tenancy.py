"""Tenancy CRD models: ClusterVersion and VirtualCluster."""

from typing import Any, Dict, List, Optional

from pydantic import Field

from vcmanager.constants import (
    CLUSTERVERSION_KIND,
    CLUSTERVERSION_PLURAL,
    DEFAULT_CLUSTER_DOMAIN,
    GROUP,
    VERSION,
    VIRTUALCLUSTER_KIND,
    VIRTUALCLUSTER_PLURAL,
)
from vcmanager.crd.base import CRDSpec, CRDStatus
from vcmanager.crd.registry import CRDRegistry


class ComponentTemplate(CRDSpec):
    """StatefulSet and optional Service template for one control plane component."""

    metadata: Optional[Dict[str, Any]] = Field(
        default=None, description="Metadata applied to the component objects"
    )
    statefulset: Dict[str, Any] = Field(
        ..., description="StatefulSet object used as the component template"
    )
    service: Optional[Dict[str, Any]] = Field(
        default=None, description="Service object fronting the component"
    )


@CRDRegistry.register(
    GROUP, VERSION, CLUSTERVERSION_KIND, CLUSTERVERSION_PLURAL, scope="Cluster"
)
class ClusterVersionSpec(CRDSpec):
    """ClusterVersion CRD specification."""

    apiServer: ComponentTemplate = Field(..., description="kube-apiserver template")
    etcd: ComponentTemplate = Field(..., description="etcd template")
    controllerManager: ComponentTemplate = Field(
        ..., description="kube-controller-manager template"
    )


class VirtualClusterStatus(CRDStatus):
    """Observed state of a VirtualCluster."""

    clusterNamespace: Optional[str] = None
    reason: Optional[str] = None
    message: Optional[str] = None
    appliedClusterVersionHash: Optional[str] = None
    configErrorCount: int = 0


@CRDRegistry.register(
    GROUP,
    VERSION,
    VIRTUALCLUSTER_KIND,
    VIRTUALCLUSTER_PLURAL,
    status_model=VirtualClusterStatus,
    printer_columns=[
        {"name": "Phase", "type": "string", "jsonPath": ".status.phase"},
        {
            "name": "Namespace",
            "type": "string",
            "jsonPath": ".status.clusterNamespace",
        },
        {
            "name": "ClusterVersion",
            "type": "string",
            "jsonPath": ".spec.clusterVersionName",
        },
    ],
)
class VirtualClusterSpec(CRDSpec):
    """VirtualCluster CRD specification."""

    clusterVersionName: str = Field(
        ..., description="Name of the ClusterVersion providing the control plane"
    )
    clusterDomain: str = Field(
        default=DEFAULT_CLUSTER_DOMAIN, description="DNS domain of the virtual cluster"
    )
    pkiExpireDays: int = Field(
        default=365, ge=1, description="Validity of issued certificates in days"
    )
    opaqueMetaPrefixes: List[str] = Field(
        default_factory=list,
        description="Label/annotation prefixes hidden from the tenant by the syncer",
    )
    transparentMetaPrefixes: List[str] = Field(
        default_factory=list,
        description="Label/annotation prefixes copied through by the syncer",
    )
