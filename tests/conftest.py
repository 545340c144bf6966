import asyncio
from typing import List, Optional, Sequence

import pytest

from app.schemas import Invoice, InvoiceStatus
from app.services.checkpoint import CheckpointStore
from app.services.cln import InvoiceBackend
from app.services.consumer import InvoiceConsumptionLoop, RetryPolicy
from app.services.keys import load_private_key
from app.services.nostr_event import Event, KIND_ZAP_REQUEST
from app.services.zap_note import ZapNoteBuilder
from app.services.zap_request import ZapRequestDecoder

# Key that signs zap notes
ZAPPER_SECRET = "505fd02741816952ec9a70204221acdd8458906d3e1e0604fef033876c811a8f"
# Key of the wallet sending zap requests
SENDER_SECRET = "3c1a6d9c2b5a4e8f7d6c5b4a39281706f5e4d3c2b1a09f8e7d6c5b4a39281706"

RECIPIENT = "00003687cecf074d81949ce8b95a860789e2be03925f3d3860ae27573fdc2218"
ZAPPED_EVENT = "d07f03815931a3767ea91ee9cb3920758cd6dcb4e206ef0f1061f7e3c51f338e"
DEFAULT_RELAY = "ws://localhost:8080"
BOLT11 = "lnbc500n1pjq7u7jsp5n5jth3w6d4wjnjmup0nwlr2xfqthg8leru8yj8cyqf3sszapfxeq"


def sign_zap_request(tags: Sequence[Sequence[str]], content: str = "", kind: int = KIND_ZAP_REQUEST) -> Event:
    private_key, public_key_hex = load_private_key(SENDER_SECRET)
    return Event.sign(private_key, public_key_hex, kind=kind, content=content, tags=tags, created_at=1678734288)


def zap_request_json(tags: Sequence[Sequence[str]], content: str = "") -> str:
    return sign_zap_request(tags, content).to_json()


def paid_invoice(description: str, pay_index: Optional[int] = 1, amount_msat: Optional[int] = 50000,
                 bolt11: Optional[str] = BOLT11, payment_preimage: Optional[bytes] = None) -> Invoice:
    return Invoice(
        label=f"invoice-{pay_index}",
        description=description,
        bolt11=bolt11,
        payment_preimage=payment_preimage,
        amount_msat=amount_msat,
        pay_index=pay_index,
        status=InvoiceStatus.PAID
    )


class FakeBackend(InvoiceBackend):
    """Replays a script of invoices / exceptions, then blocks forever"""

    def __init__(self, results: List):
        self.results = list(results)
        self.cursors: List[Optional[int]] = []
        self.on_exhausted = None

    async def wait_for_invoice_since(self, cursor):
        self.cursors.append(cursor)
        if not self.results:
            if self.on_exhausted is not None:
                self.on_exhausted()
            await asyncio.Event().wait()
        result = self.results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


class RecordingBroadcaster:
    def __init__(self):
        self.calls = []

    async def broadcast(self, relays, event):
        self.calls.append((set(relays), event))
        return set(relays)


@pytest.fixture
def zapper_keys():
    return load_private_key(ZAPPER_SECRET)


@pytest.fixture
def builder(zapper_keys):
    private_key, public_key_hex = zapper_keys
    return ZapNoteBuilder(private_key, public_key_hex, clock=lambda: 1687251840)


@pytest.fixture
def decoder():
    return ZapRequestDecoder()


@pytest.fixture
def checkpoint_store(tmp_path):
    return CheckpointStore(str(tmp_path / "cln-zapper" / "last_pay_index"))


@pytest.fixture
def broadcaster():
    return RecordingBroadcaster()


@pytest.fixture
def make_consumer(checkpoint_store, decoder, builder, broadcaster):
    def _make(backend=None, cursor=0, store=None, retry_policy=RetryPolicy(delay=0), max_concurrent_broadcasts=16):
        consumer = InvoiceConsumptionLoop(
            backend=backend or FakeBackend([]),
            checkpoint_store=store or checkpoint_store,
            decoder=decoder,
            builder=builder,
            broadcaster=broadcaster,
            default_relays=[DEFAULT_RELAY],
            cursor=cursor,
            retry_policy=retry_policy,
            max_concurrent_broadcasts=max_concurrent_broadcasts
        )
        if isinstance(consumer.backend, FakeBackend):
            consumer.backend.on_exhausted = consumer.stop
        return consumer
    return _make
