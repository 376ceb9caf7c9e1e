from __future__ import annotations

import pytest

from ekvols.models import Deadline, DeadlineExceeded


@pytest.fixture
def clock(monkeypatch: pytest.MonkeyPatch) -> list[float]:
    now = [50.0]
    monkeypatch.setattr("ekvols.models.time.monotonic", lambda: now[0])
    return now


def test_deadline_request_timeout_is_capped_by_remaining_budget(clock: list[float]) -> None:
    deadline = Deadline.after(10)

    assert deadline.request_timeout(30) == 10
    clock[0] += 8
    assert deadline.request_timeout(30) == pytest.approx(2)
    assert deadline.request_timeout(1) == 1
    assert not deadline.expired()


def test_deadline_request_timeout_refuses_exhausted_budget(clock: list[float]) -> None:
    deadline = Deadline.after(1)
    clock[0] += 1

    assert deadline.expired()
    with pytest.raises(DeadlineExceeded, match="pass deadline exceeded"):
        deadline.request_timeout(30)


def test_deadline_without_limit_passes_timeouts_through() -> None:
    deadline = Deadline.after(None)

    assert not deadline.expired()
    assert deadline.request_timeout(30) == 30
