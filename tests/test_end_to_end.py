"""End-to-end tests: build an artifact, then run it under the supervisor."""

import os
import signal
import textwrap
import time
from pathlib import Path

import httpx

from shipwright.config import Settings
from shipwright.core.models import BuildConfiguration
from shipwright.pipeline import BuildPipeline
from shipwright.supervisor import ProcessState, ProcessSupervisor

ENV = {"DATABASE_URL": "postgres://localhost/demo"}

HEALTH_SERVER_ENTRY = textwrap.dedent(
    """\
    import time

    from shipwright.runtime import HealthServer

    MODE = __EXECUTION_MODE__

    server = HealthServer.from_env()


    @server.dependency("database")
    def connect_database():
        time.sleep(3.0)


    server.configure()
    server.serve()
    """
)


def wait_for(condition, timeout: float = 10.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if condition():
            return True
        time.sleep(0.05)
    return False


class TestArtifactUnderSupervisor:
    """A built HealthServer artifact supervised like production."""

    def test_live_then_ready_then_graceful_stop(
        self, build_config: BuildConfiguration, project_dir: Path, free_port: int
    ) -> None:
        (project_dir / "server" / "app.py").write_text(HEALTH_SERVER_ENTRY)
        artifact = BuildPipeline(build_config).run(ENV).artifact

        settings = Settings(port=free_port, grace_period=8.0, startup_timeout=30.0, probe_interval=0.05)
        supervisor = ProcessSupervisor(artifact, settings, base_env={**os.environ, **ENV})
        base = f"http://127.0.0.1:{free_port}"

        process = supervisor.start()
        try:
            assert supervisor.wait_until_live()

            with httpx.Client(timeout=2.0, trust_env=False) as client:
                # Live while the slow dependency is still connecting
                assert client.get(f"{base}/health").status_code == 200
                not_ready = client.get(f"{base}/ready")
                assert not_ready.status_code == 503
                assert not_ready.json()["dependencies"]["database"] in ("pending", "initializing")

                assert wait_for(lambda: client.get(f"{base}/ready").status_code == 200)
                assert client.get(f"{base}/").status_code == 200

            started = time.monotonic()
            report = supervisor.stop(signal.SIGINT)
            elapsed = time.monotonic() - started
        finally:
            if process.state != ProcessState.EXITED:
                supervisor.stop(signal.SIGKILL)

        assert report.requested
        assert report.succeeded
        assert report.live_confirmed
        assert not report.forced
        assert elapsed < settings.grace_period
