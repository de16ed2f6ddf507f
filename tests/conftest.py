"""Pytest configuration and fixtures."""

import socket
import sys
import tempfile
import textwrap
from pathlib import Path
from typing import Generator

import pytest

from shipwright.core.models import BuildConfiguration


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Provide a temporary directory that is cleaned up after the test."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir).resolve()


@pytest.fixture
def project_dir(temp_dir: Path) -> Path:
    """Provide a small service project: a UI tree and a two-module server."""
    project = temp_dir / "project"

    client = project / "client"
    (client / "assets").mkdir(parents=True)
    (client / "img").mkdir()
    (client / "index.html").write_text(
        textwrap.dedent(
            """\
            <!doctype html>
            <html>
              <head>
                <link rel="stylesheet" href="/assets/style.css">
                <link rel="icon" href="//cdn.example.com/favicon.ico">
              </head>
              <body>
                <a href="/">home</a>
                <script src="/assets/app.js"></script>
              </body>
            </html>
            """
        )
    )
    (client / "assets" / "app.js").write_text("console.log('app');\n")
    (client / "assets" / "style.css").write_text("body { background: url(/img/bg.png); }\n")
    (client / "img" / "bg.png").write_bytes(b"\x89PNG\r\n")
    (client / ".env.local").write_text("SECRET=1\n")

    server = project / "server"
    server.mkdir()
    (server / "app.py").write_text(
        textwrap.dedent(
            """\
            from helpers import greeting

            MODE = __EXECUTION_MODE__

            if __name__ == "__main__":
                print(greeting(MODE))
            """
        )
    )
    (server / "helpers.py").write_text(
        textwrap.dedent(
            """\
            def greeting(mode):
                return f"running in {mode} mode"
            """
        )
    )
    return project


@pytest.fixture
def build_config(project_dir: Path, temp_dir: Path) -> BuildConfiguration:
    """Provide a BuildConfiguration for the sample project."""
    return BuildConfiguration(
        name="demo",
        runtime=sys.executable,
        server_entry=project_dir / "server" / "app.py",
        assets_source=project_dir / "client",
        output_dir=temp_dir / "dist",
        external=("fastapi",),
        environment={"required": ["DATABASE_URL"], "optional": ["STRIPE_SECRET_KEY"]},
    )


@pytest.fixture
def free_port() -> int:
    """Return a TCP port that is free at the time of the call."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]
