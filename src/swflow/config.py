"""Runtime configuration for the execution engine."""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass, field
from datetime import timedelta
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

__all__ = ["EngineConfig"]


@dataclass
class EngineConfig:
    """Settings shared by every instance an engine runs.

    Attributes:
        secrets: Secret values exposed to expressions as ``$secrets``. A
            definition only sees the names it lists under ``use.secrets``.
        runtime_name: Reported to expressions as ``$runtime.name``.
        runtime_version: Reported to expressions as ``$runtime.version``.
        workflow_timeout: Default instance timeout applied when a definition
            declares none. ``None`` means no limit.
        sleep: Coroutine used for every wait the engine performs (retry
            backoff, ``wait`` tasks). Replace it to observe or skip delays.
        rng: Random source for retry jitter.
        log_level: Level passed to :func:`swflow.log.configure_logging` by
            the Litestar plugin.
        json_logs: Render logs as JSON lines.
    """

    secrets: dict[str, Any] = field(default_factory=dict)
    runtime_name: str = "swflow"
    runtime_version: str = "0.1.0"
    workflow_timeout: timedelta | None = None
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
    rng: random.Random = field(default_factory=random.Random)
    log_level: str = "INFO"
    json_logs: bool = False

    def secrets_for(self, names: tuple[str, ...]) -> dict[str, Any]:
        """Return the subset of configured secrets a definition may read."""
        return {name: self.secrets[name] for name in names if name in self.secrets}
