import asyncio
import dataclasses
import json
from collections import defaultdict

import pytest

from app.services import relay as relay_module
from app.services.relay import RelayBroadcaster

from tests.conftest import RECIPIENT, sign_zap_request


class FakeRelayNetwork:
    """Stands in for websockets.connect"""

    def __init__(self, unreachable=()):
        self.unreachable = set(unreachable)
        self.attempts = []
        self.received = defaultdict(list)
        self.open_connections = 0
        self.peak_connections = 0

    def connect(self, url, **kwargs):
        self.attempts.append(url)
        network = self

        class Connection:
            async def __aenter__(self):
                if url in network.unreachable:
                    raise OSError(f"connection refused: {url}")
                network.open_connections += 1
                network.peak_connections = max(network.peak_connections, network.open_connections)
                await asyncio.sleep(0)
                return self

            async def __aexit__(self, *exc_info):
                network.open_connections -= 1
                return False

            async def send(self, message):
                network.received[url].append(message)

        return Connection()


@pytest.fixture
def network(monkeypatch):
    fake = FakeRelayNetwork()
    monkeypatch.setattr(relay_module.websockets, "connect", fake.connect)
    return fake


async def test_unreachable_relay_does_not_stop_others(network):
    network.unreachable.add("wss://down.example")
    event = sign_zap_request([["p", RECIPIENT]])
    relays = {"wss://one.example", "wss://down.example", "wss://two.example"}

    delivered = await RelayBroadcaster().broadcast(relays, event)

    assert sorted(network.attempts) == sorted(relays)
    assert delivered == {"wss://one.example", "wss://two.example"}
    for url in delivered:
        assert [json.loads(m) for m in network.received[url]] == [["EVENT", event.to_dict()]]
    assert "wss://down.example" not in network.received


async def test_all_relays_down_is_not_an_error(network):
    network.unreachable.update({"wss://a.example", "wss://b.example"})
    event = sign_zap_request([["p", RECIPIENT]])
    assert await RelayBroadcaster().broadcast(["wss://a.example", "wss://b.example"], event) == set()


async def test_duplicate_relays_get_one_frame(network):
    event = sign_zap_request([["p", RECIPIENT]])
    await RelayBroadcaster().broadcast(["wss://a.example", "wss://a.example"], event)
    assert len(network.received["wss://a.example"]) == 1


async def test_event_with_bad_signature_is_not_sent(network):
    event = dataclasses.replace(sign_zap_request([["p", RECIPIENT]]), content="tampered")
    assert await RelayBroadcaster().broadcast(["wss://a.example"], event) == set()
    assert network.attempts == []


async def test_open_connections_are_capped(network):
    event = sign_zap_request([["p", RECIPIENT]])
    relays = [f"wss://relay{i}.example" for i in range(50)]

    delivered = await RelayBroadcaster(max_concurrent_relays=4).broadcast(relays, event)

    assert delivered == set(relays)
    assert network.peak_connections == 4
