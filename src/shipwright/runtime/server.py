"""
Health-aware application server for the launched artifact.

Initialization is explicitly two-phase: ``configure()`` builds the
application, ``serve()`` binds and listens. Liveness holds as soon as the
server answers; readiness waits for every registered dependency.

Example server entry bundled into an artifact:

    from shipwright.runtime import HealthServer

    server = HealthServer.from_env()

    @server.dependency("database")
    async def connect_database():
        ...

    server.configure(routers=[orders.router])
    server.serve()
"""

import asyncio
import inspect
import logging
import os
import threading
from collections.abc import Callable, Iterable, Mapping
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncGenerator

import uvicorn
from fastapi import APIRouter, FastAPI

from shipwright import __version__
from shipwright.build.assets import ENTRY_DOCUMENT
from shipwright.config import ARTIFACT_DIR_VARIABLE, Settings, configure_logging
from shipwright.core.models import ASSETS_DIRNAME, MANIFEST_FILENAME, Manifest
from shipwright.runtime.assets import mount_assets
from shipwright.runtime.middleware import InFlightMiddleware
from shipwright.runtime.routes import liveness, router as health_router
from shipwright.runtime.state import HealthState

logger = logging.getLogger(__name__)

Initializer = Callable[[], Any]

# Time the event loop gets to wind down once the drain deadline has passed
EXIT_GRACE_SECONDS = 2.0


def _force_exit(state: HealthState) -> None:
    """End the process without waiting for worker threads."""
    logger.warning(f"Drain did not complete; exiting with {state.in_flight} requests still running")
    logging.shutdown()
    os._exit(0)


class _DrainingServer(uvicorn.Server):
    """
    uvicorn server that withdraws readiness the moment a signal arrives.

    With ``exit_deadline`` set, the first signal also arms a timer that ends
    the process once the deadline passes. Sync handlers run on worker
    threads that cannot be cancelled, and a stuck one would otherwise keep
    the interpreter alive past the drain timeout.
    """

    def __init__(self, config: uvicorn.Config, health: "HealthServer", exit_deadline: float | None = None):
        super().__init__(config)
        self._health = health
        self._exit_deadline = exit_deadline
        self._exit_timer: threading.Timer | None = None

    def handle_exit(self, sig: int, frame) -> None:
        self._health.begin_shutdown()
        if self._exit_deadline is not None and self._exit_timer is None:
            self._exit_timer = threading.Timer(self._exit_deadline, _force_exit, args=(self._health.state,))
            self._exit_timer.daemon = True
            self._exit_timer.start()
        super().handle_exit(sig, frame)

    def disarm(self) -> None:
        if self._exit_timer is not None:
            self._exit_timer.cancel()


class HealthServer:
    """
    FastAPI application wrapper exposing liveness and readiness.

    Dependencies registered with ``add_dependency`` are initialized in the
    background after startup; readiness flips true once all succeed. On a
    shutdown signal readiness flips false immediately while in-flight
    requests drain for at most ``settings.drain_timeout`` seconds; a request
    stuck in a sync handler cannot hold the process open much longer.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        assets_dir: Path | None = None,
        title: str = "Shipwright service",
    ):
        self._settings = settings or Settings()
        self._assets_dir = assets_dir
        self._title = title
        self._dependencies: list[tuple[str, Initializer]] = []
        self._app: FastAPI | None = None
        self._init_task: asyncio.Task | None = None
        self._server: _DrainingServer | None = None
        self.state = HealthState()

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None, **kwargs) -> "HealthServer":
        """
        Build a server from the environment the supervisor provides.

        Assets are located relative to the artifact directory named by
        SW_ARTIFACT_DIR, never relative to the working directory.
        """
        env = os.environ if environ is None else environ
        settings = Settings.from_env(env)
        if "assets_dir" not in kwargs:
            kwargs["assets_dir"] = _artifact_assets(env.get(ARTIFACT_DIR_VARIABLE))
        return cls(settings, **kwargs)

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def app(self) -> FastAPI:
        if self._app is None:
            raise RuntimeError("HealthServer.configure() has not been called")
        return self._app

    def add_dependency(self, name: str, init: Initializer) -> None:
        """Register a sync or async initializer that must succeed before readiness."""
        if self._app is not None:
            raise RuntimeError("Dependencies must be registered before configure()")
        self._dependencies.append((name, init))
        self.state.set_dependency(name, "pending")

    def dependency(self, name: str) -> Callable[[Initializer], Initializer]:
        """Decorator form of ``add_dependency``."""

        def decorator(init: Initializer) -> Initializer:
            self.add_dependency(name, init)
            return init

        return decorator

    def configure(self, routers: Iterable[APIRouter] = ()) -> FastAPI:
        """
        Phase one: build the application without binding anything.

        Args:
            routers: Business routers, included after the health routes and
                before the static asset fallback

        Returns:
            The configured FastAPI application
        """
        if self._app is not None:
            return self._app

        app = FastAPI(title=self._title, version=__version__, lifespan=self._lifespan)
        app.state.health = self.state
        app.add_middleware(InFlightMiddleware, state=self.state)
        app.include_router(health_router, tags=["Health"])

        for router in routers:
            app.include_router(router)

        if self._assets_dir is not None:
            mount_assets(app, self._assets_dir)
        else:
            # Legacy root liveness alias; the UI owns / when assets are served
            app.add_api_route("/", liveness, methods=["GET"], include_in_schema=False)

        self._app = app
        return app

    def serve(self) -> None:
        """Phase two: bind, listen and block until shutdown completes."""
        app = self.configure()
        configure_logging(self._settings.log_level)

        config = uvicorn.Config(
            app,
            host=self._settings.host,
            port=self._settings.port,
            lifespan="on",
            log_config=None,
            # uvicorn treats 0 as "wait forever"
            timeout_graceful_shutdown=self._settings.drain_timeout or 0.01,
        )
        self._server = _DrainingServer(
            config, self, exit_deadline=self._settings.drain_timeout + EXIT_GRACE_SECONDS
        )
        logger.info(f"Binding {self._settings.host}:{self._settings.port} ({self._settings.mode} mode)")
        self._server.run()
        self._server.disarm()

        # Interpreter shutdown would join these forever
        stuck = [
            t
            for t in threading.enumerate()
            if t.is_alive() and not t.daemon and t is not threading.current_thread()
        ]
        if stuck and self.state.shutting_down:
            _force_exit(self.state)

    def begin_shutdown(self) -> None:
        """Withdraw readiness; in-flight requests keep running until drained."""
        if not self.state.shutting_down:
            logger.info(f"Shutdown requested; draining {self.state.in_flight} in-flight requests")
        self.state.begin_shutdown()

    @asynccontextmanager
    async def _lifespan(self, app: FastAPI) -> AsyncGenerator[None, None]:
        self.state.mark_live()
        logger.info("Service is live; initializing dependencies")
        self._init_task = asyncio.create_task(self._initialize_dependencies())

        yield

        self.begin_shutdown()
        if self._init_task is not None and not self._init_task.done():
            self._init_task.cancel()
            try:
                await self._init_task
            except asyncio.CancelledError:
                pass
        logger.info("Service stopped")

    async def _initialize_dependencies(self) -> None:
        for name, init in self._dependencies:
            self.state.set_dependency(name, "initializing")
            try:
                if inspect.iscoroutinefunction(init):
                    await init()
                else:
                    result = await asyncio.to_thread(init)
                    if inspect.isawaitable(result):
                        await result
            except Exception as e:
                logger.exception(f"Dependency {name} failed to initialize")
                self.state.set_dependency(name, f"failed: {e}")
                self.state.mark_not_ready(f"dependency {name} failed: {e}")
                return
            self.state.set_dependency(name, "ready")
            logger.info(f"Dependency {name} initialized")

        if self.state.mark_ready():
            logger.info("Service is ready")


def _artifact_assets(artifact_dir: str | None) -> Path | None:
    """Locate compiled assets inside an artifact directory, if any."""
    if not artifact_dir:
        return None
    root = Path(artifact_dir)
    assets_name = ASSETS_DIRNAME
    manifest_path = root / MANIFEST_FILENAME
    if manifest_path.is_file():
        assets_name = Manifest.from_file(manifest_path).assets_dir
        if assets_name is None:
            return None
    assets = root / assets_name
    return assets if (assets / ENTRY_DOCUMENT).is_file() else None
