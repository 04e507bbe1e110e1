"""kubesnap command-line interface.

Options override the ``KUBESNAP_*`` environment configuration for a single
invocation::

    kubesnap collect -o ./snap -f exclude:namespace=kube-system
    kubesnap serve ./snap --port 9095 --kubeconfig ~/.kube/config
"""

from __future__ import annotations

import asyncio
from dataclasses import replace

import click

from kubesnap import __version__
from kubesnap.config import load_config, parse_duration
from kubesnap.models.config import KubesnapConfig


def _load(log_level: str | None) -> KubesnapConfig:
    try:
        config = load_config()
    except ValueError as exc:
        raise click.UsageError(f"invalid configuration: {exc}") from exc
    if log_level:
        config.log = replace(config.log, level=log_level)
    return config


def _duration(ctx: click.Context, param: click.Parameter, value: str | None) -> float | None:
    if value is None:
        return None
    try:
        return parse_duration(value)
    except ValueError as exc:
        raise click.BadParameter(str(exc), ctx=ctx, param=param) from exc


_LOG_LEVEL = click.option(
    "--log-level",
    type=click.Choice(["debug", "info", "warning", "error"], case_sensitive=False),
    default=None,
    help="Override KUBESNAP_LOG_LEVEL.",
)


@click.group()
@click.version_option(__version__, prog_name="kubesnap")
def cli() -> None:
    """Snapshot a Kubernetes cluster and replay it as a read-only API."""


@cli.command()
@click.option("-o", "--output", default=None, help="Snapshot root directory.")
@click.option("--archive", default=None, help="Also pack the snapshot into this .tar.gz file.")
@click.option("-f", "--filter", "filters", multiple=True, help="Filter predicate, e.g. exclude:namespace=kube-system.")
@click.option("--secret-key", "secret_keys", multiple=True, help="Mapping key whose values are redacted.")
@click.option("--secret-env", "secret_env", multiple=True, help="Environment variable whose value is redacted.")
@click.option("-c", "--concurrency", type=click.IntRange(1, 64), default=None, help="Worker pool size.")
@click.option("--logs/--no-logs", "collect_logs", default=None, help="Collect Pod and Node logs.")
@click.option("--timeout", callback=_duration, default=None, help="Run deadline, e.g. 10m.")
@click.option("--kubeconfig", default=None, help="Kubeconfig of the source cluster.")
@click.option("--context", "kube_context", default=None, help="Kubeconfig context of the source cluster.")
@_LOG_LEVEL
def collect(
    output: str | None,
    archive: str | None,
    filters: tuple[str, ...],
    secret_keys: tuple[str, ...],
    secret_env: tuple[str, ...],
    concurrency: int | None,
    collect_logs: bool | None,
    timeout: float | None,
    kubeconfig: str | None,
    kube_context: str | None,
    log_level: str | None,
) -> None:
    """Collect a snapshot of the current cluster."""
    from kubesnap.app import run_collect

    config = _load(log_level)
    overrides: dict[str, object] = {
        "output": output,
        "archive": archive,
        "concurrency": concurrency,
        "collect_logs": collect_logs,
        "run_timeout": timeout,
        "kubeconfig": kubeconfig,
        "context": kube_context,
    }
    if filters:
        overrides["filters"] = list(filters)
    if secret_keys:
        overrides["secret_keys"] = list(secret_keys)
    if secret_env:
        overrides["secret_env"] = list(secret_env)
    config.collect = replace(config.collect, **{k: v for k, v in overrides.items() if v is not None})

    result = asyncio.run(run_collect(config))
    if result is None:
        raise SystemExit(1)

    click.echo(f"snapshot written to {config.collect.output}: {result.objects} objects, {result.logs} logs")
    if result.errors:
        click.echo(f"{len(result.errors)} collection error(s):", err=True)
        for error in result.errors:
            click.echo(f"  {error.scope}: {error.reason}", err=True)


@cli.command()
@click.argument("archives", nargs=-1)
@click.option("--host", default=None, help="Bind address.")
@click.option("--port", type=click.IntRange(1024, 65535), default=None, help="Bind port.")
@click.option("--kubeconfig", default=None, help="Kubeconfig to add the served contexts to.")
@click.option(
    "--update-kubeconfig",
    is_flag=True,
    default=False,
    help="Add the served contexts to $KUBECONFIG or ~/.kube/config.",
)
@click.option("--watch-idle-timeout", callback=_duration, default=None, help="Idle watch lifetime, e.g. 30m.")
@_LOG_LEVEL
def serve(
    archives: tuple[str, ...],
    host: str | None,
    port: int | None,
    kubeconfig: str | None,
    update_kubeconfig: bool,
    watch_idle_timeout: float | None,
    log_level: str | None,
) -> None:
    """Serve snapshots found under ARCHIVES as read-only API contexts."""
    from kubesnap.app import run_serve
    from kubesnap.emulator.kubeconfig import default_kubeconfig_path

    config = _load(log_level)
    if update_kubeconfig and not kubeconfig:
        kubeconfig = str(default_kubeconfig_path())
    overrides: dict[str, object] = {
        "host": host,
        "port": port,
        "kubeconfig": kubeconfig,
        "watch_idle_timeout": watch_idle_timeout,
    }
    if archives:
        overrides["archives"] = list(archives)
    config.serve = replace(config.serve, **{k: v for k, v in overrides.items() if v is not None})

    asyncio.run(run_serve(config))
