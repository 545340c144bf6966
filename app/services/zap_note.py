import logging
import time
from typing import Callable, List

from secp256k1 import PrivateKey

from app.exceptions import MissingPaymentProof
from app.models import ZapRequest
from app.schemas import Invoice
from app.services.nostr_event import Event, KIND_ZAP_RECEIPT

logger = logging.getLogger(__name__)


class ZapNoteBuilder:
    """Assembles and signs kind 9735 zap receipts.

    The caller is responsible for comparing the requested amount with the paid
    amount; the builder signs whatever it is given.
    """

    def __init__(self, private_key: PrivateKey, public_key_hex: str, clock: Callable[[], float] = time.time):
        self.private_key = private_key
        self.public_key_hex = public_key_hex
        self.clock = clock

    def build(self, zap_request: ZapRequest, invoice: Invoice) -> Event:
        tags: List[List[str]] = [list(zap_request.recipient_tag.values)]
        if zap_request.referenced_event_tag is not None:
            tags.append(list(zap_request.referenced_event_tag.values))

        if not invoice.bolt11:
            raise MissingPaymentProof(f"Invoice {invoice.label} has no bolt11")
        tags.append(["bolt11", invoice.bolt11])

        # Verbatim: verifiers hash this against the request they signed
        tags.append(["description", invoice.description])

        # Preimage is optional
        if invoice.payment_preimage is not None:
            tags.append(["preimage", invoice.payment_preimage.hex()])

        note = Event.sign(
            self.private_key,
            self.public_key_hex,
            kind=KIND_ZAP_RECEIPT,
            content="",
            tags=tags,
            created_at=int(self.clock())
        )
        logger.debug(f"Zap note: {note.to_json()}")
        return note
