"""Well-known names shared by the VirtualCluster operator."""

GROUP = "tenancy.x-k8s.io"
VERSION = "v1alpha1"
API_VERSION = f"{GROUP}/{VERSION}"

VIRTUALCLUSTER_KIND = "VirtualCluster"
VIRTUALCLUSTER_PLURAL = "virtualclusters"
CLUSTERVERSION_KIND = "ClusterVersion"
CLUSTERVERSION_PLURAL = "clusterversions"

FINALIZER = "tenancy.x-k8s.io/finalizer"

# Labels set on the root namespace and every child object
LABEL_VC_NAME = "tenancy.x-k8s.io/vcname"
LABEL_VC_NAMESPACE = "tenancy.x-k8s.io/vcnamespace"
LABEL_VC_UID = "tenancy.x-k8s.io/vcuid"
LABEL_VC_ROOT = "tenancy.x-k8s.io/vcroot"
LABEL_MANAGED_BY = "app.kubernetes.io/managed-by"
MANAGED_BY = "vcmanager"

# Set by an operator on a VirtualCluster to allow a ClusterVersion rollout
LABEL_VC_READY_FOR_UPGRADE = "tenancy.x-k8s.io/vc-ready-for-upgrade"
TRUTHY_LABEL_VALUES = ("true", "yes", "1")

ANNOTATION_CLUSTER_VERSION = "tenancy.x-k8s.io/clusterversion"

# PKI secrets in the root namespace
ROOT_CA_SECRET_NAME = "root-ca"
APISERVER_CA_SECRET_NAME = "apiserver-ca"
ETCD_CA_SECRET_NAME = "etcd-ca"
CONTROLLER_MANAGER_SECRET_NAME = "controller-manager-kubeconfig"
ADMIN_SECRET_NAME = "admin-kubeconfig"
SERVICE_ACCOUNT_SECRET_NAME = "serviceaccount-rsa"

PKI_SECRET_NAMES = (
    ROOT_CA_SECRET_NAME,
    APISERVER_CA_SECRET_NAME,
    ETCD_CA_SECRET_NAME,
    CONTROLLER_MANAGER_SECRET_NAME,
    ADMIN_SECRET_NAME,
    SERVICE_ACCOUNT_SECRET_NAME,
)

# Control plane components, in the order they are brought up
ETCD = "etcd"
APISERVER = "apiserver"
CONTROLLER_MANAGER = "controller-manager"
COMPONENTS = (ETCD, APISERVER, CONTROLLER_MANAGER)

# ClusterVersion spec key for each component
COMPONENT_SPEC_KEYS = {
    ETCD: "etcd",
    APISERVER: "apiServer",
    CONTROLLER_MANAGER: "controllerManager",
}

# Fixed child object names
STATEFULSET_NAMES = {
    ETCD: "etcd",
    APISERVER: "apiserver",
    CONTROLLER_MANAGER: "controller-manager",
}
SERVICE_NAMES = {
    ETCD: "etcd",
    APISERVER: "apiserver-svc",
}

APISERVER_PORT = 6443
DEFAULT_CLUSTER_DOMAIN = "cluster.local"
DEFAULT_REPLICAS = 1
MAX_NAMESPACE_LENGTH = 63

# Condition types written to VirtualCluster status
CONDITION_NAMESPACE_READY = "NamespaceReady"
CONDITION_PKI_READY = "PKIReady"
CONDITION_CONTROL_PLANE_READY = "ControlPlaneReady"
CONDITION_UPGRADE_AVAILABLE = "UpgradeAvailable"
CONDITION_READY = "Ready"
