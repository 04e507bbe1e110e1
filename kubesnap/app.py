"""Application bootstrap for kubesnap.

Two entry points share the same configuration and logging setup:

``collect``: config -> logging -> cluster client -> collection engine
             -> optional archive.
``serve``:   config -> logging -> context registry -> kubeconfig -> REST.

Serve shutdown is graceful: components are stopped in reverse startup order,
and each stop is guarded independently so one failing teardown does not
prevent the rest from running.
"""

from __future__ import annotations

import asyncio
import signal
from typing import TYPE_CHECKING

from kubesnap.config import load_config
from kubesnap.models.config import KubesnapConfig
from kubesnap.observability.logging import get_logger, log_context, new_run_id, setup_logging

if TYPE_CHECKING:
    import structlog

    from kubesnap.collector.engine import CollectionResult

_SHUTDOWN_GRACE_SECONDS = 15


class _ComponentError(Exception):
    """Raised when a mandatory component fails to start."""

    def __init__(self, component: str, cause: Exception) -> None:
        super().__init__(f"Component '{component}' failed to start: {cause}")
        self.component = component
        self.cause = cause


def _kubesnap_version() -> str:
    from kubesnap import __version__

    return __version__


# ---------------------------------------------------------------------------
# collect
# ---------------------------------------------------------------------------


class CollectApp:
    """One collection run against a live cluster."""

    def __init__(self, config: KubesnapConfig) -> None:
        self.config = config
        self._client: object | None = None
        self._log: structlog.stdlib.BoundLogger = get_logger("app")

    async def run(self) -> CollectionResult:
        """Collect a snapshot.

        Raises:
            _ComponentError: the cluster client or the filters could not be set up.
            DiscoveryError: the cluster's resource catalog was unavailable.
        """
        from kubesnap.collector.engine import CollectionEngine
        from kubesnap.collector.retry import RetrySchedule
        from kubesnap.filters.engine import Filter, FilterSyntaxError
        from kubesnap.snapshot.redaction import SecretSet
        from kubesnap.snapshot.store import SnapshotStore

        collect = self.config.collect
        try:
            filter_ = Filter.parse(collect.filters)
        except FilterSyntaxError as exc:
            raise _ComponentError("filters", exc) from exc

        await self._start_client()
        try:
            engine = CollectionEngine(
                self._client,  # type: ignore[arg-type]
                SnapshotStore(collect.output),
                filter_=filter_,
                schedule=RetrySchedule.from_config(self.config.retry),
                concurrency=collect.concurrency,
                secrets=SecretSet.from_env(collect.secret_keys, collect.secret_env),
                collect_logs=collect.collect_logs,
                run_timeout=collect.run_timeout,
            )
            result = await engine.collect()
        finally:
            await self._stop_client()

        if collect.archive:
            from kubesnap.snapshot.archive import pack

            pack(collect.output, collect.archive)
        return result

    async def _start_client(self) -> None:
        """Build the kubernetes-asyncio backed cluster client."""
        self._log.debug("starting k8s client")
        try:
            # Imported lazily so serve mode never loads kubernetes-asyncio.
            from kubesnap.cluster.kube import KubernetesClusterClient

            self._client = await KubernetesClusterClient.from_config(
                kubeconfig=self.config.collect.kubeconfig,
                context=self.config.collect.context,
            )
        except Exception as exc:
            raise _ComponentError("k8s_client", exc) from exc

    async def _stop_client(self) -> None:
        if self._client is None:
            return
        try:
            await self._client.close()  # type: ignore[attr-defined]
        except Exception as exc:
            self._log.debug("k8s client close raised (non-fatal)", error=str(exc))
        self._client = None


async def run_collect(config: KubesnapConfig | None = None) -> CollectionResult | None:
    """Run one collection.

    Returns None on a fatal start-up or discovery error.  Recorded per-task
    errors do not fail the run.
    """
    from kubesnap.collector.discovery import DiscoveryError

    config = config or load_config()
    setup_logging(config.log.level, console=config.log.format == "console")
    log = get_logger("app")
    log.info("kubesnap collect starting", version=_kubesnap_version(), output=config.collect.output)

    try:
        with log_context(run_id=new_run_id()):
            result = await CollectApp(config).run()
    except _ComponentError as exc:
        log.critical("fatal startup error", component=exc.component, error=str(exc.cause))
        return None
    except DiscoveryError as exc:
        log.critical("fatal discovery error", error=str(exc))
        return None

    log.info(
        "kubesnap collect finished",
        objects=result.objects,
        logs=result.logs,
        errors=len(result.errors),
        output=config.collect.output,
    )
    return result


# ---------------------------------------------------------------------------
# serve
# ---------------------------------------------------------------------------


class ServeApp:
    """Owns the emulator components and coordinates their lifecycle.

    ``stop()`` is safe to call on an app that was never started or is
    already stopped.
    """

    def __init__(self, config: KubesnapConfig) -> None:
        self.config = config
        self._registry: object | None = None
        self._kubeconfig: object | None = None
        self._rest_server: object | None = None
        self._background_tasks: list[asyncio.Task[None]] = []
        self._running = False
        self._log: structlog.stdlib.BoundLogger = get_logger("app")

    @property
    def running(self) -> bool:
        return self._running

    @property
    def server_task(self) -> asyncio.Task[None] | None:
        return self._background_tasks[0] if self._background_tasks else None

    async def start(self) -> None:
        """Start all components in dependency order.

        Raises _ComponentError if a mandatory component cannot start.
        """
        # --- 1. Snapshot contexts ----------------------------------------
        await self._start_registry()

        # --- 2. Kubeconfig entries (optional) ----------------------------
        await self._start_kubeconfig()

        # --- 3. REST API -------------------------------------------------
        await self._start_rest()

        self._running = True
        self._log.info("kubesnap serving", port=self.config.serve.port)

    async def _start_registry(self) -> None:
        self._log.debug("loading snapshots", search_paths=self.config.serve.archives)
        try:
            from kubesnap.emulator.contexts import ContextRegistry

            self._registry = ContextRegistry.from_search_paths(self.config.serve.archives)
        except Exception as exc:
            raise _ComponentError("registry", exc) from exc

    async def _start_kubeconfig(self) -> None:
        if not self.config.serve.kubeconfig:
            return
        assert self._registry is not None
        try:
            from kubesnap.emulator.kubeconfig import KubeconfigBinding, client_host

            serve = self.config.serve
            binding = KubeconfigBinding(
                serve.kubeconfig,
                server=f"http://{client_host(serve.host)}:{serve.port}",
                names=self._registry.names(),  # type: ignore[attr-defined]
            )
            binding.install()
            self._kubeconfig = binding
        except Exception as exc:
            raise _ComponentError("kubeconfig", exc) from exc

    async def _start_rest(self) -> None:
        """Start the uvicorn REST server."""
        assert self._registry is not None
        self._log.debug("starting rest api")
        try:
            import uvicorn

            from kubesnap.emulator.app import create_app

            fastapi_app = create_app(registry=self._registry, config=self.config.serve)  # type: ignore[arg-type]
            uv_config = uvicorn.Config(
                app=fastapi_app,
                host=self.config.serve.host,
                port=self.config.serve.port,
                log_config=None,  # structlog handles all logging
                access_log=False,
            )
            server = uvicorn.Server(uv_config)
            task = asyncio.create_task(server.serve(), name="rest-server")
            self._background_tasks.append(task)
            self._rest_server = server
            self._log.info("rest api started", host=self.config.serve.host, port=self.config.serve.port)
        except Exception as exc:
            raise _ComponentError("rest", exc) from exc

    async def stop(self) -> None:
        """Stop all components in reverse startup order."""
        if not self._running and self._registry is None:
            return
        self._log.info("kubesnap shutting down")
        self._running = False

        await self._stop_rest()
        self._stop_sync("kubeconfig", self._kubeconfig, "remove")
        self._stop_sync("registry", self._registry, "close")
        self._kubeconfig = None
        self._registry = None
        self._log.info("kubesnap stopped")

    async def _stop_rest(self) -> None:
        if self._rest_server is not None:
            self._rest_server.should_exit = True  # type: ignore[attr-defined]
        for task in self._background_tasks:
            try:
                await asyncio.wait_for(task, timeout=_SHUTDOWN_GRACE_SECONDS)
            except TimeoutError:
                self._log.warning("component stop timed out", component="rest", timeout=_SHUTDOWN_GRACE_SECONDS)
            except Exception as exc:
                self._log.error("component stop raised an error", component="rest", error=str(exc))
        self._background_tasks.clear()
        self._rest_server = None

    def _stop_sync(self, name: str, component: object | None, method: str) -> None:
        if component is None:
            return
        try:
            getattr(component, method)()
        except Exception as exc:
            self._log.error("component stop raised an error", component=name, error=str(exc))


async def run_serve(config: KubesnapConfig | None = None) -> None:
    """Serve snapshots until SIGTERM/SIGINT or the server exits."""
    config = config or load_config()
    setup_logging(config.log.level, console=config.log.format == "console")
    app = ServeApp(config)
    loop = asyncio.get_running_loop()
    shutdown = asyncio.Event()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, shutdown.set)

    try:
        await app.start()
        waiter = asyncio.create_task(shutdown.wait(), name="shutdown-wait")
        server_task = app.server_task
        pending = {waiter, server_task} if server_task is not None else {waiter}
        await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
        waiter.cancel()
    except _ComponentError as exc:
        log = get_logger("app")
        log.critical("fatal startup error", component=exc.component, error=str(exc.cause))
        await app.stop()
        raise SystemExit(1) from exc
    finally:
        await app.stop()
