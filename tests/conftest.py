import random

import pytest

import app as game_app
from resilience import CircuitBreaker, RetryController
from story_engine import StoryEngine
from tests.fakes import FakeClient, FakeClock


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleeps(clock):
    recorded = []

    def sleep(seconds):
        recorded.append(seconds)
        clock.advance(seconds)

    sleep.calls = recorded
    return sleep


@pytest.fixture
def make_engine(clock, sleeps):
    def _make(scripts, fallback="fallback-model", deadline=None, breaker=None):
        client = FakeClient(scripts)
        breaker = breaker or CircuitBreaker(clock=clock)
        retry = RetryController(breaker, sleep=sleeps, clock=clock, rng=random.Random(7))
        engine = StoryEngine(
            client,
            "primary-model",
            fallback_model=fallback,
            breaker=breaker,
            retry=retry,
            deadline=deadline,
        )
        return engine, client

    return _make


@pytest.fixture
def reset_games():
    game_app._games.clear()
    yield
    game_app._games.clear()
    game_app._engine = None
    game_app._image_client = None
