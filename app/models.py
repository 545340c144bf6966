import re
from dataclasses import dataclass
from typing import FrozenSet, Optional, Sequence, Tuple, Union

from app.exceptions import MalformedEvent
from app.services.nostr_event import Event

_HEX_64 = re.compile(r'^[0-9a-f]{64}$')


@dataclass(frozen=True)
class RecipientTag:
    """`p` tag: pubkey that receives the zap"""
    values: Tuple[str, ...]

    @property
    def pubkey(self) -> str:
        return self.values[1]


@dataclass(frozen=True)
class EventReferenceTag:
    """`e` tag: event being zapped"""
    values: Tuple[str, ...]

    @property
    def event_id(self) -> str:
        return self.values[1]


@dataclass(frozen=True)
class RelayListTag:
    """`relays` tag: every element after the marker is a relay url"""
    values: Tuple[str, ...]

    @property
    def relays(self) -> Tuple[str, ...]:
        return self.values[1:]


@dataclass(frozen=True)
class AmountTag:
    """`amount` tag: millisatoshis the sender intends to pay"""
    values: Tuple[str, ...]
    msat: int


@dataclass(frozen=True)
class OtherTag:
    values: Tuple[str, ...]


Tag = Union[RecipientTag, EventReferenceTag, RelayListTag, AmountTag, OtherTag]


def _require_hex_key(values: Tuple[str, ...]) -> None:
    if len(values) < 2 or not _HEX_64.match(values[1]):
        raise MalformedEvent(f"Tag '{values[0]}' must carry a 64 character hex value")


def parse_tag(raw: Sequence[str]) -> Tag:
    """Classify a raw tag array into one of the known tag variants"""
    values = tuple(raw)
    marker = values[0]

    if marker == "p":
        _require_hex_key(values)
        return RecipientTag(values)
    if marker == "e":
        _require_hex_key(values)
        return EventReferenceTag(values)
    if marker == "relays":
        return RelayListTag(values)
    if marker == "amount":
        if len(values) < 2:
            raise MalformedEvent("Amount tag has no value")
        try:
            msat = int(values[1])
        except ValueError:
            raise MalformedEvent(f"Amount tag value is not an integer: {values[1]!r}")
        if msat < 0:
            raise MalformedEvent(f"Amount tag value is negative: {msat}")
        return AmountTag(values, msat)
    return OtherTag(values)


@dataclass(frozen=True)
class ZapRequest:
    """Validated view of a kind 9734 request embedded in an invoice description"""
    source_event: Event
    recipient_tag: RecipientTag
    referenced_event_tag: Optional[EventReferenceTag]
    relays: FrozenSet[str]
    requested_amount_msat: Optional[int]
