"""Notification ports: abstract interfaces for alarm delivery channels.

Core modules depend on these protocols, never on a specific provider.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol


class LiveChannel(Protocol):
    """Real-time delivery to the owning user's connected client."""

    async def broadcast_alarm(self, user_id: int, payload: dict[str, Any]) -> None: ...


@dataclass
class PushResult:
    success_count: int = 0
    failure_count: int = 0
    invalid_tokens: list[str] = field(default_factory=list)


class PushChannel(Protocol):
    """Mobile/web push. Reports tokens the provider says are no longer valid."""

    async def send(self, tokens: list[str], title: str, body: str, data: dict[str, str] | None = None) -> PushResult: ...
