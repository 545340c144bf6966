import logging
from typing import List

from app.exceptions import InvalidSignature, RecipientTagCount, ReferenceTagCount
from app.models import (
    AmountTag,
    EventReferenceTag,
    RecipientTag,
    RelayListTag,
    Tag,
    ZapRequest,
    parse_tag,
)
from app.services.nostr_event import Event

logger = logging.getLogger(__name__)


class ZapRequestDecoder:
    """Turns an invoice description into a validated zap request.

    Most invoices paid to a node are not zaps at all, so every failure here is
    an ordinary outcome and is reported as a ZapRequestError subclass:

    - MalformedEvent: not a well formed nostr event
    - InvalidSignature: id or signature does not check out
    - RecipientTagCount: not exactly one `p` tag
    - ReferenceTagCount: more than one `e` tag
    """

    def decode(self, description: str) -> ZapRequest:
        event = Event.from_json(description)

        if not event.verify():
            raise InvalidSignature(f"Zap request {event.id[:16]}... has an invalid id or signature")

        tags: List[Tag] = [parse_tag(raw) for raw in event.tags]

        recipients = [t for t in tags if isinstance(t, RecipientTag)]
        if len(recipients) != 1:
            raise RecipientTagCount(f"Expected exactly one p tag, found {len(recipients)}")

        references = [t for t in tags if isinstance(t, EventReferenceTag)]
        if len(references) > 1:
            raise ReferenceTagCount(f"Expected at most one e tag, found {len(references)}")

        relays = frozenset(
            relay
            for t in tags if isinstance(t, RelayListTag)
            for relay in t.relays
        )

        amounts = [t for t in tags if isinstance(t, AmountTag)]
        requested_amount_msat = amounts[0].msat if amounts else None

        return ZapRequest(
            source_event=event,
            recipient_tag=recipients[0],
            referenced_event_tag=references[0] if references else None,
            relays=relays,
            requested_amount_msat=requested_amount_msat
        )


# Global decoder instance
zap_request_decoder = ZapRequestDecoder()
