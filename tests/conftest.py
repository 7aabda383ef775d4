import pytest

from histlock.crypto import CryptoManager
from histlock.session import AuthSessionController
from histlock.storage import MemoryKeyValueStore


class FakeClock:
    """Callable clock the tests move by hand."""

    def __init__(self, now=1_700_000_000):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class CountingRandom:
    """Deterministic random source: 0, 1, 2, ... continuing across calls."""

    def __init__(self):
        self.next_value = 0

    def __call__(self, length):
        data = bytes((self.next_value + i) % 256 for i in range(length))
        self.next_value += length
        return data


class FlakyStore(MemoryKeyValueStore):
    """Memory store whose writes can be made to fail."""

    def __init__(self):
        super().__init__()
        self.fail_writes = False

    def set(self, key, value):
        if self.fail_writes:
            raise OSError("disk full")
        super().set(key, value)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def random_source():
    return CountingRandom()


@pytest.fixture
def fast_crypto(random_source):
    # Fewer iterations keep the state machine tests quick; the KDF itself is covered in test_crypto
    return CryptoManager(iterations=1000, random_source=random_source)


@pytest.fixture
def store():
    return FlakyStore()


@pytest.fixture
def make_controller(store, fast_crypto, clock):
    def _make(**kwargs):
        return AuthSessionController(store, crypto=fast_crypto, clock=clock, **kwargs)
    return _make


@pytest.fixture
def controller(make_controller):
    return make_controller()
