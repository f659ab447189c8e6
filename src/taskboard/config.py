"""Load optional board configuration from `.taskboard/config.yaml`."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .constants import (
    CONFIG_FILE,
    DEFAULT_ACTIVATION_DISTANCE,
    DEFAULT_BASE_KEY,
    DEFAULT_IRREGULARITY_RATIO,
    DEFAULT_KEY_GAP,
    DEFAULT_MAX_KEY,
    DEFAULT_MIN_GAP,
    DEFAULT_REFETCH_RETRY_DELAY,
    ENV_REOPEN_ON_LEAVE_COMPLETED,
    STATE_DIR_NAME,
)
from .io_utils import _load_data_with_error

logger = logging.getLogger(__name__)

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class OrderingSettings:
    """Tunables for order-key allocation and group rebalancing."""

    base_key: float = DEFAULT_BASE_KEY
    gap: float = DEFAULT_KEY_GAP
    min_gap: float = DEFAULT_MIN_GAP
    max_key: float = DEFAULT_MAX_KEY
    irregularity_ratio: float = DEFAULT_IRREGULARITY_RATIO
    # When False, leaving a completed column keeps ``completed`` as it was.
    reopen_on_leave_completed: bool = True


@dataclass(frozen=True)
class ClientSettings:
    activation_distance: float = DEFAULT_ACTIVATION_DISTANCE
    refetch_retry_delay: float = DEFAULT_REFETCH_RETRY_DELAY


@dataclass(frozen=True)
class ServerSettings:
    denied_actors: frozenset[str] = field(default_factory=frozenset)


def load_board_config(project_dir: Path) -> tuple[dict[str, Any], str | None]:
    """Load the optional board config file.

    Args:
        project_dir: Directory that holds the ``.taskboard/`` state directory.

    Returns:
        A tuple of `(config, error_message)`. If the file is missing, returns `({}, None)`.
    """
    path = project_dir.resolve() / STATE_DIR_NAME / CONFIG_FILE
    if not path.exists():
        return {}, None
    data, err = _load_data_with_error(path, {})
    if err:
        return {}, err
    return data, None


def _get_nested(config: dict[str, Any], *keys: str) -> Any:
    cur: Any = config
    for key in keys:
        if not isinstance(cur, dict):
            return None
        cur = cur.get(key)
    return cur


def _positive_float(raw: Any, default: float, name: str) -> float:
    if raw is None:
        return default
    try:
        value = float(raw)
    except (TypeError, ValueError):
        logger.warning("Ignoring non-numeric %s=%r", name, raw)
        return default
    if value <= 0:
        logger.warning("Ignoring non-positive %s=%r", name, raw)
        return default
    return value


def _bool(raw: Any, default: bool) -> bool:
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, str):
        lowered = raw.strip().lower()
        if lowered in _TRUTHY:
            return True
        if lowered in _FALSY:
            return False
    return default


def get_ordering_settings(config: dict[str, Any]) -> OrderingSettings:
    """Build :class:`OrderingSettings` from the ``ordering`` config block.

    The ``TASKBOARD_REOPEN_ON_LEAVE_COMPLETED`` environment variable wins over
    the file for the completion policy.
    """
    raw = _get_nested(config, "ordering")
    block = raw if isinstance(raw, dict) else {}
    defaults = OrderingSettings()
    reopen = _bool(block.get("reopen_on_leave_completed"), defaults.reopen_on_leave_completed)
    reopen = _bool(os.environ.get(ENV_REOPEN_ON_LEAVE_COMPLETED), reopen)
    settings = OrderingSettings(
        base_key=_positive_float(block.get("base_key"), defaults.base_key, "ordering.base_key"),
        gap=_positive_float(block.get("gap"), defaults.gap, "ordering.gap"),
        min_gap=_positive_float(block.get("min_gap"), defaults.min_gap, "ordering.min_gap"),
        max_key=_positive_float(block.get("max_key"), defaults.max_key, "ordering.max_key"),
        irregularity_ratio=_positive_float(
            block.get("irregularity_ratio"), defaults.irregularity_ratio, "ordering.irregularity_ratio"
        ),
        reopen_on_leave_completed=reopen,
    )
    if settings.min_gap >= settings.gap:
        logger.warning("ordering.min_gap must be smaller than ordering.gap; using defaults")
        settings = OrderingSettings(base_key=settings.base_key, reopen_on_leave_completed=reopen)
    return settings


def get_client_settings(config: dict[str, Any]) -> ClientSettings:
    raw = _get_nested(config, "client")
    block = raw if isinstance(raw, dict) else {}
    defaults = ClientSettings()
    return ClientSettings(
        activation_distance=_positive_float(
            block.get("activation_distance"), defaults.activation_distance, "client.activation_distance"
        ),
        refetch_retry_delay=_positive_float(
            block.get("refetch_retry_delay"), defaults.refetch_retry_delay, "client.refetch_retry_delay"
        ),
    )


def get_server_settings(config: dict[str, Any]) -> ServerSettings:
    raw = _get_nested(config, "server", "denied_actors")
    if not isinstance(raw, list):
        return ServerSettings()
    return ServerSettings(denied_actors=frozenset(str(a) for a in raw if a))
