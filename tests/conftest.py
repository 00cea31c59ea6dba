"""Shared test fixtures."""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterable

import pytest

from worksheet_gen.generation.errors import ProviderError
from worksheet_gen.generation.provider.base import ProviderReply, ProviderRequest, ProviderRole


class ManualClock:
    """Monotonic clock moved only by the test."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleeper:
    """Record backoff delays; optionally move a manual clock forward."""

    def __init__(self, clock: ManualClock | None = None) -> None:
        self.delays: list[float] = []
        self._clock = clock

    def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        if self._clock is not None:
            self._clock.advance(seconds)


Reply = str | ProviderReply | Exception | Callable[[ProviderRequest], str]


class ScriptedProvider:
    """Answer provider calls from per-role reply queues and record every request."""

    def __init__(self, replies: dict[ProviderRole, Iterable[Reply]] | None = None) -> None:
        self._queues = {role: list(items) for role, items in (replies or {}).items()}
        self._lock = threading.Lock()
        self.requests: list[ProviderRequest] = []

    def complete(self, request: ProviderRequest) -> ProviderReply:
        with self._lock:
            self.requests.append(request)
            queue = self._queues.get(request.label, [])
            reply: Reply = (
                queue.pop(0)
                if queue
                else ProviderError(
                    f"No scripted reply for {request.label.value}",
                    code="empty_reply",
                )
            )
        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            reply = reply(request)
        if isinstance(reply, ProviderReply):
            return reply
        return ProviderReply(text=reply)

    def calls(self, role: ProviderRole) -> list[ProviderRequest]:
        return [request for request in self.requests if request.label == role]


@pytest.fixture()
def manual_clock() -> ManualClock:
    return ManualClock()


@pytest.fixture()
def recording_sleeper(manual_clock: ManualClock) -> RecordingSleeper:
    return RecordingSleeper(manual_clock)


@pytest.fixture()
def scripted_provider() -> Callable[..., ScriptedProvider]:
    """Factory: ``scripted_provider(generation=[...], agent=[...], fixer=[...])``."""

    def _build(
        *,
        generation: Iterable[Reply] = (),
        agent: Iterable[Reply] = (),
        fixer: Iterable[Reply] = (),
    ) -> ScriptedProvider:
        return ScriptedProvider(
            {
                ProviderRole.GENERATION: generation,
                ProviderRole.AGENT: agent,
                ProviderRole.FIXER: fixer,
            },
        )

    return _build
