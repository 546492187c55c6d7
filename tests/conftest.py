import asyncio
from typing import Dict, Set

import pytest

from association_finder.config.config import CacheSettings, ScanSettings
from association_finder.database.memory_store import MemorySnapshotStore
from association_finder.exceptions import TransportError
from association_finder.probing.address import AddressScheme
from association_finder.probing.prober import Prober
from association_finder.probing.retry import RetryPolicy
from association_finder.scanner.batch_scanner import BatchScanner
from association_finder.transport.http_transport import TransportResponse

ADDRESS_TEMPLATE = 'https://example.test/profiles/{peer}/recommended/{resource}/'
RESOURCE_MARKER = '/recommended/{resource}'


class FakeClock:
    """Monotonic clock whose sleep() only advances time."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start
        self.sleeps = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds

    async def sleep(self, seconds: float):
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


class FakeTransport:
    """Answers probes the way the profile site does.

    A peer listed in ``holders[resource]`` stays on the probe address; any
    other peer is redirected to its profile page.
    """

    def __init__(self):
        self.holders: Dict[str, Set[str]] = {}
        self.rate_limited: Dict[str, float] = {}  # peer -> number of 429s before answering
        self.failing: Set[str] = set()
        self.statuses: Dict[str, int] = {}
        self.calls = []

    async def request(self, address: str) -> TransportResponse:
        parts = address.split('/')
        peer, resource = parts[4], parts[6]
        self.calls.append((peer, resource))
        await asyncio.sleep(0)

        if peer in self.failing:
            raise TransportError(f"connection reset for {peer}", address=address)
        if self.rate_limited.get(peer, 0) > 0:
            self.rate_limited[peer] -= 1
            return TransportResponse(final_address=address, status_code=429)
        if peer in self.statuses:
            return TransportResponse(final_address=address, status_code=self.statuses[peer])
        if peer in self.holders.get(resource, set()):
            return TransportResponse(final_address=address, status_code=200, body='review')
        return TransportResponse(final_address=f'https://example.test/profiles/{peer}/', status_code=200)

    def probed(self, peer: str) -> int:
        return sum(1 for p, _ in self.calls if p == peer)


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def address_scheme():
    return AddressScheme(ADDRESS_TEMPLATE, RESOURCE_MARKER)


@pytest.fixture
def prober(transport, address_scheme, fake_clock):
    retry_policy = RetryPolicy(backoff=10.0, max_retry_window=60.0, clock=fake_clock, sleep=fake_clock.sleep)
    return Prober(transport, address_scheme, retry_policy)


@pytest.fixture
def memory_store():
    return MemorySnapshotStore()


@pytest.fixture
def cache_settings():
    return CacheSettings(format_version='v2', ttl_hours=7 * 24, snapshot_key='association_dict')


@pytest.fixture
def scanner(prober, memory_store, fake_clock):
    settings = ScanSettings(concurrency=3, inter_batch_delay_seconds=0.05, checkpoint_every=1)
    return BatchScanner(prober, settings, checkpoint_store=memory_store,
                        clock=fake_clock, sleep=fake_clock.sleep, wall_clock=fake_clock)


@pytest.fixture
def peers():
    return [f'7656119800000000{i}' for i in range(1, 10)]
