"""Board clients: how the reconciler talks to the authoritative board."""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Optional

import httpx
from loguru import logger

from ..constants import ACTOR_HEADER
from ..ordering.errors import MoveError
from ..ordering.model import Board, MoveIntent, Task, intent_to_request
from ..ordering.orchestrator import MoveOrchestrator
from .errors import MoveFailed, RefetchFailed


class BoardClient(ABC):
    @abstractmethod
    async def fetch_board(self, project_id: str) -> Board:
        """Return the authoritative board or raise :class:`RefetchFailed`."""

    @abstractmethod
    async def move(self, task_id: str, intent: MoveIntent) -> Task:
        """Issue one move and return the persisted task or raise :class:`MoveFailed`."""


class LocalBoardClient(BoardClient):
    """In-process client that runs the orchestrator on a worker thread."""

    def __init__(self, orchestrator: MoveOrchestrator, *, actor: str = "system") -> None:
        self.orchestrator = orchestrator
        self.actor = actor

    async def fetch_board(self, project_id: str) -> Board:
        try:
            return await asyncio.to_thread(self.orchestrator.board, project_id)
        except MoveError as exc:
            raise RefetchFailed(exc.message) from exc

    async def move(self, task_id: str, intent: MoveIntent) -> Task:
        try:
            return await asyncio.to_thread(self.orchestrator.move, task_id, intent, actor=self.actor)
        except MoveError as exc:
            raise MoveFailed.from_error(exc) from exc


class HttpBoardClient(BoardClient):
    """Client for the ``taskboard`` HTTP API.

    Usage::

        async with HttpBoardClient("http://127.0.0.1:8080", actor="alice") as client:
            board = await client.fetch_board("proj-1")
    """

    def __init__(
        self,
        base_url: str,
        *,
        actor: Optional[str] = None,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        headers = {ACTOR_HEADER: actor} if actor else {}
        self._owns_client = client is None
        self._http = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._headers = headers

    async def __aenter__(self) -> "HttpBoardClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    async def fetch_board(self, project_id: str) -> Board:
        try:
            resp = await self._http.get(f"/api/projects/{project_id}/board", headers=self._headers)
        except httpx.HTTPError as exc:
            raise RefetchFailed(f"Board request failed: {exc}") from exc
        if resp.status_code != 200:
            raise RefetchFailed(f"Board request returned {resp.status_code}: {_detail(resp)}")
        raw = _json_body(resp).get("board")
        if not isinstance(raw, dict):
            raise RefetchFailed("Board response carried no board")
        try:
            return Board.from_dict(raw)
        except (TypeError, ValueError) as exc:
            raise RefetchFailed(f"Malformed board response: {exc}") from exc

    async def move(self, task_id: str, intent: MoveIntent) -> Task:
        try:
            resp = await self._http.post(
                f"/api/tasks/{task_id}/move",
                json=intent_to_request(intent),
                headers=self._headers,
            )
        except httpx.HTTPError as exc:
            logger.warning("Move request for {} failed: {}", task_id, exc)
            raise MoveFailed(f"Move request failed: {exc}", code="unreachable", retryable=True) from exc
        if resp.status_code != 200:
            body = _json_body(resp)
            raise MoveFailed(
                str(body.get("detail") or resp.text or resp.reason_phrase),
                code=str(body.get("error") or "move_failed"),
                status_code=resp.status_code,
                retryable=bool(body.get("retryable", False)),
            )
        raw = _json_body(resp).get("task")
        if not isinstance(raw, dict) or not raw.get("id"):
            raise MoveFailed("Move response carried no task", code="bad_response", status_code=resp.status_code)
        try:
            return Task.from_dict(raw)
        except (TypeError, ValueError) as exc:
            raise MoveFailed(
                f"Malformed move response: {exc}", code="bad_response", status_code=resp.status_code
            ) from exc


def _json_body(resp: httpx.Response) -> dict[str, Any]:
    try:
        body = resp.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def _detail(resp: httpx.Response) -> str:
    return str(_json_body(resp).get("detail") or resp.reason_phrase)
