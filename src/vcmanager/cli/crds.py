"""CRD manifests generated from the tenancy models."""

from pathlib import Path

import typer
from typing_extensions import Annotated

from vcmanager.crd.generator import CRDManager


def generate_crds(
    output: Annotated[
        Path, typer.Option("-o", "--output", help="Output directory")
    ] = Path("crds/generated"),
    force: Annotated[
        bool, typer.Option("--force", help="Regenerate even if models are unchanged")
    ] = False,
    validate: Annotated[
        bool, typer.Option("--validate", help="Validate the written files")
    ] = False,
):
    """Write one CRD YAML per model plus a kustomization."""
    manager = CRDManager(output_dir=output)
    try:
        generated = manager.generate_all_crds(force=force)
    except (OSError, ValueError) as e:
        typer.echo(f"Failed to generate CRDs: {e}")
        raise typer.Exit(1)

    if not generated:
        typer.echo("No CRDs generated (models unchanged)")
        return

    typer.echo(f"CRDs generated successfully in {output}")
    if not validate:
        return
    if not manager.validate_generated_crds():
        typer.echo("CRD validation failed")
        raise typer.Exit(1)
    typer.echo("CRD validation passed")


def validate_models():
    """Render every CRD in memory without writing files."""
    manager = CRDManager()
    try:
        crds = manager.get_crds_as_dict()
    except ValueError as e:
        typer.echo(f"Model validation failed: {e}")
        raise typer.Exit(1)

    models = manager.registry.get_all_models()
    typer.echo(f"Validated {len(models)} CRD models")
    for key, info in sorted(models.items()):
        typer.echo(f"  - {key} ({info.scope}) -> {info.crd_name}")
    typer.echo(f"Generated {len(crds)} CRDs in memory")
