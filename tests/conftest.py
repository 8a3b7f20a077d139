"""Shared fixtures and capability fakes."""

from datetime import datetime, timedelta, timezone

import pytest

from pulsekeeper.runtime import HostRuntime, WakeTriggerError


class FakeClock:
    """Settable UTC clock."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeInbox:
    def __init__(self, fail: bool = False):
        self.messages: list[str] = []
        self.fail = fail

    async def enqueue_message(self, text: str) -> None:
        if self.fail:
            raise OSError("inbox unavailable")
        self.messages.append(text)


class FakeTrigger:
    def __init__(self, fail: bool = False):
        self.calls: list[tuple[str, float]] = []
        self.fail = fail

    async def trigger(self, text: str, timeout: float) -> None:
        self.calls.append((text, timeout))
        if self.fail:
            raise WakeTriggerError("agent unreachable")


class FakeNotifier:
    def __init__(self, result: bool = True):
        self.sent: list[tuple[str, str]] = []
        self.result = result

    async def send(self, recipient: str, text: str) -> bool:
        self.sent.append((recipient, text))
        return self.result


class FakeProbe:
    """Returns queued answers in order; an Exception instance is raised."""

    def __init__(self, answers):
        self.answers = list(answers)
        self.calls = 0

    async def _next(self) -> bool:
        self.calls += 1
        answer = self.answers.pop(0)
        if isinstance(answer, Exception):
            raise answer
        return answer

    async def check(self, url: str, timeout: float) -> bool:
        return await self._next()

    async def is_running(self, name: str, timeout: float) -> bool:
        return await self._next()


FIXED_NOW = datetime(2026, 3, 14, 9, 30, tzinfo=timezone.utc)


@pytest.fixture
def clock():
    return FakeClock(FIXED_NOW)


@pytest.fixture
def ledger(tmp_path, clock):
    from pulsekeeper.economy.ledger import ResourceLedger

    led = ResourceLedger(data_dir=tmp_path, clock=clock)
    led.load()
    return led


@pytest.fixture
def inbox():
    return FakeInbox()


@pytest.fixture
def trigger():
    return FakeTrigger()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def runtime(inbox, trigger, notifier):
    return HostRuntime(inbox=inbox, wake_trigger=trigger, notifier=notifier)
