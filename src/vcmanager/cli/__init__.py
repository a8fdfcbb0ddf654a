import typer
from dotenv import load_dotenv, find_dotenv

from vcmanager.cli.crds import generate_crds, validate_models
from vcmanager.cli.render import render

load_dotenv(find_dotenv())

app = typer.Typer(
    help="vcmanager: VirtualCluster control plane operator",
    add_completion=False,
)

app.command("render")(render)
app.command("generate-crds")(generate_crds)
app.command("validate-models")(validate_models)


@app.command("operator")
def run_operator():
    """Run the Kubernetes operator (connects to cluster)."""
    from vcmanager.main import main

    main()


@app.command("plugins")
def list_plugins():
    """List the plugins the operator would load."""
    from vcmanager.plugins.registry import PluginRegistry

    registry = PluginRegistry()
    registry.discover_plugins()
    for meta in registry.get_plugins_metadata():
        typer.echo(f"{meta['name']} v{meta['version']}: {meta['description']}")
        typer.echo(f"  models: {', '.join(meta['models'])}")
