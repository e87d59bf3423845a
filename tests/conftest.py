import pytest

from ledgersort.di.container import EngineContext

from factories import FakeClock, NeverRandom


@pytest.fixture
def engine():
    return EngineContext(rng=NeverRandom(), breaker_clock=FakeClock())
