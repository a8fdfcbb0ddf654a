"""Dry run of template resolution for one VirtualCluster."""

from pathlib import Path
from typing import Optional

import typer
import yaml
from typing_extensions import Annotated

from vcmanager.constants import API_VERSION, VIRTUALCLUSTER_KIND
from vcmanager.errors import ConfigurationError
from vcmanager.services.namespace_manager import get_root_namespace
from vcmanager.services.template_resolver import resolve


def build_virtualcluster(name, namespace, cluster_version, uid, cluster_domain=None):
    spec = {"clusterVersionName": cluster_version}
    if cluster_domain:
        spec["clusterDomain"] = cluster_domain
    return {
        "apiVersion": API_VERSION,
        "kind": VIRTUALCLUSTER_KIND,
        "metadata": {"name": name, "namespace": namespace, "uid": uid},
        "spec": spec,
    }


def render_bundle(cluster_version, vc):
    """Return the desired child objects of ``vc`` as a list of dicts."""
    root_namespace = get_root_namespace(vc)
    bundle = resolve(cluster_version, vc, root_namespace)
    return [body for _, body in bundle.objects()]


def render(
    cluster_version: Annotated[
        Path, typer.Option("--cluster-version", help="ClusterVersion YAML file")
    ],
    name: Annotated[str, typer.Option("--name", help="VirtualCluster name")],
    namespace: Annotated[
        str, typer.Option("--namespace", help="VirtualCluster namespace")
    ] = "default",
    uid: Annotated[
        str, typer.Option("--uid", help="VirtualCluster uid used for the root namespace hash")
    ] = "00000000-0000-0000-0000-000000000000",
    cluster_domain: Annotated[
        Optional[str], typer.Option("--cluster-domain", help="Override the cluster DNS domain")
    ] = None,
):
    """Print the StatefulSets and Services a VirtualCluster would get."""
    cv = yaml.safe_load(cluster_version.read_text())
    if not isinstance(cv, dict) or "metadata" not in cv:
        typer.echo(f"{cluster_version} is not a ClusterVersion manifest")
        raise typer.Exit(1)

    vc = build_virtualcluster(name, namespace, cv["metadata"]["name"], uid, cluster_domain)
    try:
        objects = render_bundle(cv, vc)
    except ConfigurationError as e:
        typer.echo(f"Render failed: {e}")
        raise typer.Exit(1)

    typer.echo(yaml.safe_dump_all(objects, default_flow_style=False, sort_keys=False))
