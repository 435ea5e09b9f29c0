"""Shared fixtures."""

from typing import Callable, List

import pytest

from tests.fakes import FakeTimer


@pytest.fixture
def timers() -> List[FakeTimer]:
    """List that collects every FakeTimer created through timer_factory."""
    return []


@pytest.fixture
def timer_factory(timers: List[FakeTimer]) -> Callable[[float, Callable[[], None]], FakeTimer]:
    def factory(delay: float, callback: Callable[[], None]) -> FakeTimer:
        timer = FakeTimer(delay, callback)
        timers.append(timer)
        return timer

    return factory


@pytest.fixture
def fixed_clock() -> Callable[[], str]:
    return lambda: "2024-05-01T10:00:00+00:00"
