import httpx
import json
import logging
from abc import ABC, abstractmethod
from typing import Optional, Dict, Any

from pydantic import ValidationError

from app.exceptions import InvoiceBackendError, MalformedInvoice
from app.schemas import Invoice

logger = logging.getLogger(__name__)


class InvoiceBackend(ABC):
    """Source of paid or expired invoices"""

    @abstractmethod
    async def wait_for_invoice_since(self, cursor: Optional[int]) -> Invoice:
        """Block until an invoice with a pay index greater than cursor is paid or expires.

        cursor=None waits for the very next invoice regardless of history.
        Raises InvoiceBackendError when the backend is unavailable.
        """


class ClnRestBackend(InvoiceBackend):
    """Core Lightning `waitanyinvoice` over the clnrest plugin"""

    def __init__(
        self,
        endpoint: str,
        rune: str,
        verify=True,
        connect_timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.endpoint = endpoint.rstrip('/')
        self.headers = {
            'Rune': rune,
            'Content-Type': 'application/json'
        }
        self.verify = verify
        # Long poll: no read timeout
        self.timeout = httpx.Timeout(connect_timeout, read=None)
        self.transport = transport

    async def wait_for_invoice_since(self, cursor: Optional[int]) -> Invoice:
        payload: Dict[str, Any] = {}
        if cursor is not None:
            payload['lastpay_index'] = cursor

        async with httpx.AsyncClient(verify=self.verify, transport=self.transport) as client:
            try:
                response = await client.post(
                    f"{self.endpoint}/v1/waitanyinvoice",
                    headers=self.headers,
                    json=payload,
                    timeout=self.timeout
                )
                response.raise_for_status()
                data = response.json()
            except httpx.HTTPStatusError as e:
                raise InvoiceBackendError(f"CLN REST error {e.response.status_code}: {e.response.text}")
            except httpx.HTTPError as e:
                raise InvoiceBackendError(f"CLN REST error: {str(e)}")
            except json.JSONDecodeError:
                raise InvoiceBackendError("Invalid response from CLN REST")

        if not isinstance(data, dict):
            raise InvoiceBackendError("Invalid response from CLN REST")

        try:
            return Invoice.from_cln(data)
        except (ValidationError, ValueError) as e:
            pay_index = data.get('pay_index')
            if isinstance(pay_index, bool) or not isinstance(pay_index, int) or pay_index < 0:
                pay_index = None
            raise MalformedInvoice(f"Unexpected invoice from CLN REST: {str(e)}", pay_index=pay_index)
