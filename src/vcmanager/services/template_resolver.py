"""Resolve a ClusterVersion into the desired objects for one VirtualCluster."""

import copy
import hashlib
import json
import logging
from dataclasses import dataclass, field

import jinja2

from vcmanager.constants import (
    ANNOTATION_CLUSTER_VERSION,
    CLUSTERVERSION_PLURAL,
    COMPONENT_SPEC_KEYS,
    COMPONENTS,
    CONTROLLER_MANAGER,
    DEFAULT_CLUSTER_DOMAIN,
    DEFAULT_REPLICAS,
    LABEL_MANAGED_BY,
    LABEL_VC_NAME,
    LABEL_VC_NAMESPACE,
    LABEL_VC_UID,
    MANAGED_BY,
    PKI_SECRET_NAMES,
    SERVICE_NAMES,
    STATEFULSET_NAMES,
)
from vcmanager.errors import ClusterVersionNotFound, MalformedTemplate

logger = logging.getLogger(__name__)

SERVER_SET_METADATA = (
    "uid",
    "resourceVersion",
    "generation",
    "creationTimestamp",
    "managedFields",
    "selfLink",
    "ownerReferences",
)

_jinja_env = jinja2.Environment(undefined=jinja2.StrictUndefined, autoescape=False)


@dataclass
class DesiredBundle:
    """Everything one VirtualCluster's root namespace should contain."""

    cluster_version_name: str
    content_hash: str
    namespace: str
    secret_names: tuple = PKI_SECRET_NAMES
    services: list = field(default_factory=list)
    statefulsets: dict = field(default_factory=dict)

    def objects(self):
        """(kind, body) pairs in apply order."""
        for svc in self.services:
            yield "Service", svc
        for component in COMPONENTS:
            if component in self.statefulsets:
                yield "StatefulSet", self.statefulsets[component]


def owner_labels(vc):
    meta = vc["metadata"]
    return {
        LABEL_VC_NAME: meta["name"],
        LABEL_VC_NAMESPACE: meta.get("namespace", ""),
        LABEL_VC_UID: meta.get("uid", ""),
        LABEL_MANAGED_BY: MANAGED_BY,
    }


def cluster_version_hash(cluster_version):
    """Content hash of a ClusterVersion spec, stable across key order."""
    spec = cluster_version.get("spec", {})
    encoded = json.dumps(spec, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(encoded.encode()).hexdigest()


def desired_replicas(statefulset):
    replicas = (statefulset.get("spec") or {}).get("replicas")
    return DEFAULT_REPLICAS if replicas is None else int(replicas)


def fetch_cluster_version(host, name):
    """Read the referenced ClusterVersion or raise ClusterVersionNotFound."""
    if not name:
        raise ClusterVersionNotFound(name)
    cluster_version = host.get_custom(CLUSTERVERSION_PLURAL, None, name)
    if cluster_version is None:
        raise ClusterVersionNotFound(name)
    return cluster_version


def _render(value, context, path):
    if isinstance(value, dict):
        return {k: _render(v, context, f"{path}.{k}") for k, v in value.items()}
    if isinstance(value, list):
        return [_render(v, context, f"{path}[{i}]") for i, v in enumerate(value)]
    if isinstance(value, str) and ("{{" in value or "{%" in value):
        try:
            return _jinja_env.from_string(value).render(**context)
        except jinja2.TemplateError as e:
            raise MalformedTemplate(f"Cannot render {path}: {e}")
    return value


def _prepare(obj, kind, api_version, name, namespace, labels, annotations):
    obj = copy.deepcopy(obj)
    obj.pop("status", None)
    obj["apiVersion"] = api_version
    obj["kind"] = kind

    meta = obj.setdefault("metadata", {})
    for key in SERVER_SET_METADATA:
        meta.pop(key, None)
    meta.pop("generateName", None)
    meta["name"] = name
    meta["namespace"] = namespace
    meta["labels"] = {**(meta.get("labels") or {}), **labels}
    meta["annotations"] = {**(meta.get("annotations") or {}), **annotations}
    return obj


def _build_statefulset(component, template, namespace, labels, annotations):
    statefulset = template.get("statefulset")
    if not isinstance(statefulset, dict):
        raise MalformedTemplate(f"Component {component} has no statefulset template")

    sts = _prepare(
        statefulset,
        "StatefulSet",
        "apps/v1",
        STATEFULSET_NAMES[component],
        namespace,
        labels,
        annotations,
    )
    spec = sts.setdefault("spec", {})
    containers = (((spec.get("template") or {}).get("spec") or {}).get("containers")) or []
    if not containers:
        raise MalformedTemplate(f"Component {component} statefulset has no containers")
    for container in containers:
        if not container.get("name"):
            raise MalformedTemplate(f"Component {component} has an unnamed container")
    if spec.get("replicas") is None:
        spec["replicas"] = DEFAULT_REPLICAS
    return sts


def resolve(cluster_version, vc, root_namespace):
    """Build the DesiredBundle for ``vc`` from ``cluster_version``.

    Pure: no API calls. Canonical object names override any name in the
    template so every VirtualCluster gets the same layout.
    """
    cv_name = cluster_version["metadata"]["name"]
    cv_spec = cluster_version.get("spec") or {}
    vc_spec = vc.get("spec") or {}

    context = {
        "cluster_namespace": root_namespace,
        "cluster_name": vc["metadata"]["name"],
        "cluster_domain": vc_spec.get("clusterDomain") or DEFAULT_CLUSTER_DOMAIN,
        "vc_namespace": vc["metadata"].get("namespace", ""),
    }
    base_labels = owner_labels(vc)
    annotations = {ANNOTATION_CLUSTER_VERSION: cv_name}

    bundle = DesiredBundle(
        cluster_version_name=cv_name,
        content_hash=cluster_version_hash(cluster_version),
        namespace=root_namespace,
    )

    for component in COMPONENTS:
        spec_key = COMPONENT_SPEC_KEYS[component]
        template = cv_spec.get(spec_key)
        if not isinstance(template, dict):
            raise MalformedTemplate(
                f"ClusterVersion {cv_name} is missing the {spec_key} component"
            )
        template = _render(template, context, f"spec.{spec_key}")

        component_labels = {
            **((template.get("metadata") or {}).get("labels") or {}),
            **base_labels,
        }
        bundle.statefulsets[component] = _build_statefulset(
            component, template, root_namespace, component_labels, annotations
        )

        service = template.get("service")
        if component == CONTROLLER_MANAGER:
            if service:
                logger.debug(f"Ignoring service template of {component} in {cv_name}")
            continue
        if not isinstance(service, dict):
            raise MalformedTemplate(f"Component {component} has no service template")
        bundle.services.append(
            _prepare(
                service,
                "Service",
                "v1",
                SERVICE_NAMES[component],
                root_namespace,
                component_labels,
                annotations,
            )
        )

    return bundle
