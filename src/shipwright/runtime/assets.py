"""
Compiled UI asset serving with single-page-app fallback.
"""

import logging
from pathlib import Path

from fastapi import FastAPI
from fastapi.responses import FileResponse, JSONResponse

from shipwright.build.assets import ENTRY_DOCUMENT

logger = logging.getLogger(__name__)


def mount_assets(app: FastAPI, assets_dir: Path, *, api_prefix: str = "/api") -> None:
    """
    Serve ``assets_dir`` for every GET not matched by an earlier route.

    Unknown paths fall back to the entry document so client-side routing
    works; unknown paths under ``api_prefix`` get a JSON 404 instead.
    Register this after all other routes.

    Args:
        app: Application to add the catch-all route to
        assets_dir: Compiled asset directory containing the entry document
        api_prefix: Path prefix that never falls back to the UI
    """
    root = assets_dir.resolve()
    index = root / ENTRY_DOCUMENT
    api = api_prefix.strip("/")

    async def serve_asset(path: str):
        if path == api or path.startswith(api + "/"):
            return JSONResponse(status_code=404, content={"error": "API endpoint not found"})
        if path:
            candidate = (root / path).resolve()
            if candidate.is_file() and candidate.is_relative_to(root):
                return FileResponse(candidate)
        return FileResponse(index)

    app.add_api_route("/{path:path}", serve_asset, methods=["GET"], include_in_schema=False)
    logger.info(f"Serving static assets from {root}")
