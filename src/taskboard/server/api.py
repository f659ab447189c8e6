"""FastAPI web server for the task board."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from ..ordering.errors import MoveError
from ..ordering.orchestrator import MoveOrchestrator, open_orchestrator
from .task_api import create_board_router


def create_app(
    project_dir: Optional[Path] = None,
    enable_cors: bool = True,
) -> FastAPI:
    """Create and configure FastAPI application.

    Args:
        project_dir: Default project directory.
        enable_cors: Whether to enable CORS.

    Returns:
        Configured FastAPI app.
    """
    app = FastAPI(
        title="Taskboard",
        description="Ordering and move API for the task board",
        version="0.1.0",
    )

    if enable_cors:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.state.default_project_dir = project_dir
    app.state.orchestrators = {}

    def _get_project_dir(project_dir_param: Optional[str] = None) -> Path:
        """Get project directory from parameter or default."""
        if project_dir_param:
            return Path(project_dir_param)
        if app.state.default_project_dir:
            return app.state.default_project_dir
        return Path.cwd()

    def _get_orchestrator(project_dir_param: Optional[str] = None) -> MoveOrchestrator:
        resolved = _get_project_dir(project_dir_param).resolve()
        cache: dict[Path, MoveOrchestrator] = app.state.orchestrators
        if resolved not in cache:
            logger.info("Opening board at {}", resolved)
            cache[resolved] = open_orchestrator(resolved)
        return cache[resolved]

    @app.exception_handler(MoveError)
    async def _move_error_handler(request: Request, exc: MoveError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("{} {} failed: {}", request.method, request.url.path, exc.message)
        else:
            logger.debug("{} {} rejected ({}): {}", request.method, request.url.path, exc.code, exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    app.include_router(create_board_router(_get_orchestrator))
    return app
