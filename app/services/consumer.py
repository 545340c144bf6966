import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import FrozenSet, Iterable, Optional, Set

from app.exceptions import CheckpointError, MalformedInvoice, ZapNoteError, ZapRequestError
from app.schemas import Invoice, InvoiceStatus
from app.services.checkpoint import CheckpointStore
from app.services.cln import InvoiceBackend
from app.services.nostr_event import Event
from app.services.relay import RelayBroadcaster
from app.services.zap_note import ZapNoteBuilder
from app.services.zap_request import ZapRequestDecoder

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """How to retry failed backend calls. max_attempts=None retries forever."""
    delay: float = 1.0
    max_attempts: Optional[int] = None


class LoopState(str, Enum):
    IDLE = "idle"
    AWAITING_INVOICE = "awaiting_invoice"
    PROCESSING = "processing"


class InvoiceConsumptionLoop:
    """Waits for paid invoices and turns zap requests into published zap notes.

    The checkpoint is advanced before an invoice is looked at, so an invoice is
    never handed back by the backend twice, even if it is not a zap. A crash
    between the checkpoint write and the broadcast loses that zap note.

    Broadcasts run as background tasks so a slow relay never holds up the next
    invoice. At most max_concurrent_broadcasts of them exist at once; when all
    are busy the loop waits for one to finish before processing another invoice.
    stop() only interrupts the wait for the next invoice; broadcasts already
    started are allowed to finish.
    """

    def __init__(
        self,
        backend: InvoiceBackend,
        checkpoint_store: CheckpointStore,
        decoder: ZapRequestDecoder,
        builder: ZapNoteBuilder,
        broadcaster: RelayBroadcaster,
        default_relays: Iterable[str],
        cursor: Optional[int] = None,
        retry_policy: RetryPolicy = RetryPolicy(),
        max_concurrent_broadcasts: int = 16
    ):
        self.backend = backend
        self.checkpoint_store = checkpoint_store
        self.decoder = decoder
        self.builder = builder
        self.broadcaster = broadcaster
        self.default_relays: FrozenSet[str] = frozenset(default_relays)
        self.cursor = cursor
        self.retry_policy = retry_policy
        self.state = LoopState.IDLE

        self.max_concurrent_broadcasts = max_concurrent_broadcasts
        self._broadcast_tasks: Set[asyncio.Task] = set()
        self._wait_task: Optional[asyncio.Future] = None
        self._stop_event = asyncio.Event()

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    def stop(self):
        """Request shutdown; takes effect at the wait for the next invoice"""
        if self.stopped:
            return
        logger.info("Stopping invoice consumption")
        self._stop_event.set()
        if self._wait_task is not None and not self._wait_task.done():
            self._wait_task.cancel()

    async def run(self):
        """Consume invoices until stop() is called"""
        logger.info(f"Starting at pay index: {self.cursor}")
        try:
            while not self.stopped:
                invoice = await self.next_invoice()
                if invoice is None:
                    break
                await self._wait_for_broadcast_slot()
                try:
                    self.process_invoice(invoice)
                except Exception as e:
                    logger.error(f"Error processing invoice {invoice.label}: {str(e)}")
        finally:
            self.state = LoopState.IDLE
            await self.drain()
        logger.info("Invoice consumption stopped")

    async def next_invoice(self) -> Optional[Invoice]:
        """Wait for the next invoice after the cursor, retrying backend errors.

        Returns None when stopped while waiting.
        """
        attempts = 0
        while not self.stopped:
            self.state = LoopState.AWAITING_INVOICE
            self._wait_task = asyncio.ensure_future(self.backend.wait_for_invoice_since(self.cursor))
            try:
                return await self._wait_task
            except asyncio.CancelledError:
                if self.stopped:
                    return None
                raise
            except Exception as e:
                if isinstance(e, MalformedInvoice) and e.pay_index is not None:
                    # The backend would hand back the same invoice on retry
                    logger.warning(f"Skipping malformed invoice at pay index {e.pay_index}: {str(e)}")
                    self._advance_to(e.pay_index, "(malformed)")
                    attempts = 0
                    continue
                attempts += 1
                logger.warning(f"Error fetching invoice: {str(e)}")
                if self.retry_policy.max_attempts is not None and attempts >= self.retry_policy.max_attempts:
                    raise
                # Retry the same request after a pause
                await self._pause(self.retry_policy.delay)
            finally:
                self._wait_task = None
        return None

    async def _pause(self, delay: float):
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass

    def process_invoice(self, invoice: Invoice) -> Optional[Event]:
        """Handle one invoice; returns the zap note dispatched for broadcast, if any"""
        self.state = LoopState.PROCESSING
        try:
            self._advance_checkpoint(invoice)

            if invoice.status != InvoiceStatus.PAID:
                logger.debug(f"Invoice {invoice.label} is {invoice.status.value}, skipping")
                return None

            try:
                zap_request = self.decoder.decode(invoice.description)
            except ZapRequestError as e:
                logger.debug(f"Error while decoding zap (likely just not a zap invoice): {str(e)}")
                return None

            requested = zap_request.requested_amount_msat
            if requested is not None and invoice.amount_msat is not None and requested != invoice.amount_msat:
                logger.info(
                    f"Zap request {zap_request.source_event.id} amount {requested} msat "
                    f"does not equal invoice {invoice.label} amount {invoice.amount_msat} msat"
                )
                return None

            try:
                note = self.builder.build(zap_request, invoice)
            except ZapNoteError as e:
                logger.error(f"Error while creating zap note: {str(e)}")
                return None

            relays = self.default_relays | zap_request.relays
            self._dispatch_broadcast(relays, note)
            return note
        finally:
            self.state = LoopState.AWAITING_INVOICE if not self.stopped else LoopState.IDLE

    def _advance_checkpoint(self, invoice: Invoice):
        if invoice.pay_index is None:
            logger.debug(f"Invoice {invoice.label} has no pay index, cursor stays at {self.cursor}")
            return
        self._advance_to(invoice.pay_index, invoice.label)

    def _advance_to(self, pay_index: int, label: str):
        if self.cursor is not None and pay_index < self.cursor:
            logger.warning(f"Invoice {label} pay index {pay_index} is behind cursor {self.cursor}, ignoring")
            return

        self.cursor = pay_index
        try:
            self.checkpoint_store.write(pay_index)
        except CheckpointError as e:
            logger.warning(f"Could not write index tip: {str(e)}")

    def _dispatch_broadcast(self, relays: FrozenSet[str], note: Event):
        task = asyncio.ensure_future(self._broadcast(relays, note))
        self._broadcast_tasks.add(task)
        task.add_done_callback(self._broadcast_tasks.discard)

    async def _broadcast(self, relays: FrozenSet[str], note: Event):
        try:
            await self.broadcaster.broadcast(relays, note)
        except Exception as e:
            logger.warning(f"Error while broadcasting zap note {note.id}: {str(e)}")

    async def _wait_for_broadcast_slot(self):
        while len(self._broadcast_tasks) >= self.max_concurrent_broadcasts:
            await asyncio.wait(list(self._broadcast_tasks), return_when=asyncio.FIRST_COMPLETED)

    async def drain(self):
        """Wait for in-flight broadcasts to finish"""
        if self._broadcast_tasks:
            logger.info(f"Waiting for {len(self._broadcast_tasks)} broadcasts to finish")
            await asyncio.gather(*list(self._broadcast_tasks), return_exceptions=True)
