"""Command line interface."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

import typer
from kubernetes.config import ConfigException

from . import __version__
from . import logging as structured_logging
from .builders.manifests import build_crd, build_operator_manifests, to_yaml
from .config import FUNCTIONS_NAMESPACE_ENV_VAR, UPDATE_STRATEGY_ENV_VAR, OperatorConfig, UpdateStrategy
from .constants import CONTROLLER_NAME, DEFAULT_FUNCTIONS_NAMESPACE, DEFAULT_IMAGE, DEFAULT_IMAGE_TAG
from .gateway import load_kube_config

logger = logging.getLogger(__name__)


def version_callback(version: bool) -> None:
    if version:
        typer.echo(f"openfaas-functions-operator {__version__}")
        raise typer.Exit()


cli = typer.Typer(context_settings={"help_option_names": ["-h", "--help"]}, no_args_is_help=True)
crd_app = typer.Typer(no_args_is_help=True)
controller_app = typer.Typer(no_args_is_help=True)
deploy_app = typer.Typer(no_args_is_help=True)


@cli.callback()
def main_options(
    ctx: typer.Context,
    context: Optional[str] = typer.Option(None, "--context", help="Kubeconfig context to use."),
    kubeconfig: Optional[Path] = typer.Option(None, "--kubeconfig", envvar="KUBECONFIG", help="Kubeconfig file."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
    version: bool = typer.Option(
        False, "--version", help="Show version and exit", callback=version_callback, is_eager=True
    ),
) -> None:
    structured_logging.setup_structured_logging(logging.DEBUG if verbose else logging.INFO)
    ctx.obj = {"context": context, "kubeconfig": str(kubeconfig) if kubeconfig else None}


def _connect(ctx: typer.Context) -> None:
    obj = ctx.find_root().obj or {}
    try:
        load_kube_config(context=obj.get("context"), config_file=obj.get("kubeconfig"))
    except ConfigException as e:
        logger.error("Cannot load Kubernetes configuration: %s", e)
        raise typer.Exit(code=1) from e


def _write(path: Path, content: str) -> None:
    path.write_text(content)
    logger.info("Wrote %s", path)


# crd


@crd_app.command("print")
def crd_print() -> None:
    """Print the CRD as YAML."""
    typer.echo(to_yaml(build_crd()), nl=False)


@crd_app.command("write")
def crd_write(file: Path = typer.Argument(..., help="Where to write the CRD YAML.")) -> None:
    """Write the CRD YAML to a file."""
    _write(file, to_yaml(build_crd()))


@crd_app.command("install")
def crd_install(
    ctx: typer.Context,
    timeout: float = typer.Option(60.0, help="Seconds to wait for the CRD to become established."),
) -> None:
    """Install the CRD into the cluster."""
    from .installer import InstallError, install_crd

    _connect(ctx)
    try:
        install_crd(timeout=timeout)
    except InstallError as e:
        logger.error("%s", e)
        raise typer.Exit(code=1) from e


@crd_app.command("uninstall")
def crd_uninstall(ctx: typer.Context) -> None:
    """Remove the CRD, and with it every Function, from the cluster."""
    from .installer import InstallError, uninstall_crd

    _connect(ctx)
    try:
        uninstall_crd()
    except InstallError as e:
        logger.error("%s", e)
        raise typer.Exit(code=1) from e


# controller


@controller_app.callback()
def controller_options(
    ctx: typer.Context,
    functions_namespace: str = typer.Option(
        DEFAULT_FUNCTIONS_NAMESPACE,
        "--functions-namespace",
        "-n",
        envvar=FUNCTIONS_NAMESPACE_ENV_VAR,
        help="Namespace holding Functions and their Deployments and Services.",
    ),
    update_strategy: UpdateStrategy = typer.Option(
        UpdateStrategy.ONE_WAY,
        "--update-strategy",
        "-u",
        envvar=UPDATE_STRATEGY_ENV_VAR,
        help="one-way overwrites drift on children, two-way keeps external changes.",
    ),
) -> None:
    ctx.obj = {
        **(ctx.find_root().obj or {}),
        "functions_namespace": functions_namespace,
        "update_strategy": update_strategy,
    }


@controller_app.command("run")
def controller_run(ctx: typer.Context) -> None:
    """Run the controller until interrupted."""
    from .main import run_operator

    try:
        config = OperatorConfig.from_env().with_overrides(
            functions_namespace=ctx.obj["functions_namespace"],
            update_strategy=ctx.obj["update_strategy"],
        )
    except ValueError as e:
        logger.error("Invalid configuration: %s", e)
        raise typer.Exit(code=1) from e
    run_operator(config, context=ctx.obj.get("context"), config_file=ctx.obj.get("kubeconfig"))


@deploy_app.callback()
def deploy_options(
    ctx: typer.Context,
    app_name: str = typer.Option(CONTROLLER_NAME, "--app-name", "-a", help="Name of the generated objects."),
    image: str = typer.Option(f"{DEFAULT_IMAGE}:{DEFAULT_IMAGE_TAG}", "--image", "-i", help="Controller image."),
) -> None:
    ctx.obj = {**ctx.obj, "app_name": app_name, "image": image}


def _operator_manifests(ctx: typer.Context) -> List[dict]:
    return build_operator_manifests(
        ctx.obj["functions_namespace"],
        app_name=ctx.obj["app_name"],
        image=ctx.obj["image"],
        update_strategy=str(ctx.obj["update_strategy"]),
    )


@deploy_app.command("print")
def deploy_print(ctx: typer.Context) -> None:
    """Print the controller's manifests as YAML."""
    typer.echo(to_yaml(_operator_manifests(ctx)), nl=False)


@deploy_app.command("write")
def deploy_write(ctx: typer.Context, file: Path = typer.Argument(..., help="Where to write the YAML.")) -> None:
    """Write the controller's manifests to a file."""
    _write(file, to_yaml(_operator_manifests(ctx)))


@deploy_app.command("install")
def deploy_install(ctx: typer.Context) -> None:
    """Install the controller into the cluster."""
    from .installer import install_manifests

    _connect(ctx)
    failed = install_manifests(_operator_manifests(ctx))
    if failed:
        raise typer.Exit(code=1)


@deploy_app.command("uninstall")
def deploy_uninstall(ctx: typer.Context) -> None:
    """Remove the controller from the cluster."""
    from .installer import uninstall_manifests

    _connect(ctx)
    failed = uninstall_manifests(_operator_manifests(ctx))
    if failed:
        raise typer.Exit(code=1)


controller_app.add_typer(deploy_app, name="deploy", help="Manage the controller's own deployment.")
cli.add_typer(crd_app, name="crd", help="Manage the OpenFaaSFunction CRD.")
cli.add_typer(controller_app, name="controller", help="Run or deploy the controller.")


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
