from __future__ import annotations

import asyncio
from typing import List

import pytest
from pydantic import ValidationError

from session_manager import InMemorySessionBackend, SessionManager, Turn


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_get_or_create_generates_id():
    manager = SessionManager()
    session_id, session = manager.get_or_create()
    assert len(session_id) == 24
    assert session.session_id == session_id
    assert session.turns == []
    assert session_id in manager


@pytest.mark.parametrize("given", [None, ""])
def test_get_or_create_blank_ids_are_fresh(given):
    manager = SessionManager()
    first, _ = manager.get_or_create(given)
    second, _ = manager.get_or_create(given)
    assert first != second
    assert len(manager) == 2


def test_get_or_create_returns_existing_session():
    manager = SessionManager()
    session_id, session = manager.get_or_create("abc")
    manager.append(session_id, Turn(role="user", text="hi"))
    same_id, same = manager.get_or_create("abc")
    assert same_id == "abc"
    assert same is session
    assert manager.history("abc") == [Turn(role="user", text="hi")]


def test_history_is_a_copy():
    manager = SessionManager()
    manager.append("abc", Turn(role="user", text="hi"))
    history = manager.history("abc")
    history.clear()
    assert len(manager.history("abc")) == 1
    assert manager.history("missing") == []


def test_turns_are_immutable():
    turn = Turn(role="assistant", text="hello")
    with pytest.raises(ValidationError):
        turn.text = "changed"
    with pytest.raises(ValidationError):
        Turn(role="system", text="nope")


def test_append_caps_history():
    manager = SessionManager(max_turns=4)
    for i in range(7):
        manager.append("abc", Turn(role="user", text=str(i)))
    assert [t.text for t in manager.history("abc")] == ["3", "4", "5", "6"]


def test_zero_max_turns_keeps_everything():
    manager = SessionManager(max_turns=0)
    for i in range(120):
        manager.append("abc", Turn(role="user", text=str(i)))
    assert len(manager.history("abc")) == 120


def test_idle_sessions_are_evicted():
    clock = FakeClock()
    manager = SessionManager(ttl_seconds=60, clock=clock)
    manager.get_or_create("old")
    clock.now += 30
    manager.get_or_create("recent")
    clock.now += 45

    assert manager.evict_idle() == 1
    assert "old" not in manager
    assert "recent" in manager


def test_locked_sessions_are_not_evicted():
    clock = FakeClock()
    manager = SessionManager(ttl_seconds=60, clock=clock)
    manager.get_or_create("busy")

    async def scenario() -> int:
        async with manager.lock("busy"):
            clock.now += 120
            return manager.evict_idle()

    assert asyncio.run(scenario()) == 0
    assert "busy" in manager


def test_custom_backend_is_used():
    backend = InMemorySessionBackend()
    manager = SessionManager(backend=backend)
    manager.append("abc", Turn(role="user", text="hi"))
    assert len(backend) == 1
    assert backend.get("abc").turns == [Turn(role="user", text="hi")]


def test_lock_is_per_session():
    manager = SessionManager()
    assert manager.lock("a") is manager.lock("a")
    assert manager.lock("a") is not manager.lock("b")


def test_lock_serializes_same_session():
    manager = SessionManager()
    order: List[str] = []

    async def exchange(label: str) -> None:
        async with manager.lock("abc"):
            manager.append("abc", Turn(role="user", text=label))
            await asyncio.sleep(0.01)
            manager.append("abc", Turn(role="assistant", text=label))
            order.append(label)

    async def scenario() -> None:
        await asyncio.gather(exchange("one"), exchange("two"))

    asyncio.run(scenario())
    texts = [t.text for t in manager.history("abc")]
    assert texts == ["one", "one", "two", "two"]
    assert order == ["one", "two"]


class RecordingBackend(InMemorySessionBackend):
    def __init__(self) -> None:
        super().__init__()
        self.puts: List[float] = []
        self.scans = 0

    def put(self, session) -> None:
        self.puts.append(session.last_active)
        super().put(session)

    def ids(self):
        self.scans += 1
        return super().ids()


def test_touch_is_written_back():
    clock = FakeClock()
    backend = RecordingBackend()
    manager = SessionManager(backend=backend, clock=clock)
    manager.get_or_create("abc")
    clock.now += 10
    manager.get_or_create("abc")
    assert backend.puts == [1000.0, 1010.0]


def test_one_eviction_scan_per_exchange():
    backend = RecordingBackend()
    manager = SessionManager(backend=backend, ttl_seconds=60, clock=FakeClock())
    session_id, _ = manager.get_or_create()
    manager.append(session_id, Turn(role="user", text="hi"))
    manager.history(session_id)
    manager.append(session_id, Turn(role="assistant", text="hello"))
    assert backend.scans == 1
    assert len(manager.history(session_id)) == 2
