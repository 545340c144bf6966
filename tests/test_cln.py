import json

import httpx
import pytest

from app.exceptions import InvoiceBackendError, MalformedInvoice
from app.schemas import Invoice, InvoiceStatus
from app.services.cln import ClnRestBackend

PAID_RESPONSE = {
    "label": "c15c98b0-81fe-4864-a9c5-ffad716d466a",
    "description": "order #1234",
    "payment_hash": "83f34c56502833b28dc64b382ef8462c2f5edb19c427fd5456d46bfc5c35914b",
    "status": "paid",
    "expires_at": 1687338240,
    "amount_msat": 5000,
    "amount_received_msat": 50000,
    "bolt11": "lnbc500n1pjq7u7jsp5",
    "pay_index": 7,
    "paid_at": 1687251840,
    "payment_preimage": "00" * 31 + "ff",
}


def backend_with(handler, requests=None):
    def recording(request):
        if requests is not None:
            requests.append(request)
        return handler(request)
    return ClnRestBackend("https://cln.example:3010/", "rune-token", transport=httpx.MockTransport(recording))


async def test_waitanyinvoice_request_and_response():
    requests = []
    backend = backend_with(lambda request: httpx.Response(200, json=PAID_RESPONSE), requests)

    invoice = await backend.wait_for_invoice_since(6)

    request = requests[0]
    assert request.method == "POST"
    assert str(request.url) == "https://cln.example:3010/v1/waitanyinvoice"
    assert request.headers["Rune"] == "rune-token"
    assert json.loads(request.content) == {"lastpay_index": 6}

    assert invoice.label == PAID_RESPONSE["label"]
    assert invoice.status == InvoiceStatus.PAID
    assert invoice.pay_index == 7
    assert invoice.amount_msat == 50000
    assert invoice.payment_preimage == bytes(31) + b"\xff"


async def test_no_cursor_omits_lastpay_index():
    requests = []
    backend = backend_with(lambda request: httpx.Response(200, json=PAID_RESPONSE), requests)
    await backend.wait_for_invoice_since(None)
    assert json.loads(requests[0].content) == {}


async def test_error_status_is_backend_error():
    backend = backend_with(lambda request: httpx.Response(500, json={"code": -32602, "message": "boom"}))
    with pytest.raises(InvoiceBackendError):
        await backend.wait_for_invoice_since(1)


async def test_transport_failure_is_backend_error():
    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(InvoiceBackendError):
        await backend_with(refuse).wait_for_invoice_since(1)


@pytest.mark.parametrize("body", [b"not json", b"[1, 2]", json.dumps({"label": "x", "status": "unpaid"}).encode()])
async def test_unexpected_body_is_backend_error(body):
    backend = backend_with(lambda request: httpx.Response(200, content=body))
    with pytest.raises(InvoiceBackendError):
        await backend.wait_for_invoice_since(1)


@pytest.mark.parametrize("changes", [
    {"payment_preimage": "zz"},
    {"status": "refunded"},
    {"amount_received_msat": "50000sat"},
])
async def test_malformed_invoice_carries_pay_index(changes):
    body = dict(PAID_RESPONSE, **changes)
    backend = backend_with(lambda request: httpx.Response(200, json=body))

    with pytest.raises(MalformedInvoice) as exc_info:
        await backend.wait_for_invoice_since(6)

    assert exc_info.value.pay_index == 7


async def test_malformed_invoice_without_pay_index():
    body = {"label": "x", "status": "unpaid"}
    backend = backend_with(lambda request: httpx.Response(200, json=body))

    with pytest.raises(MalformedInvoice) as exc_info:
        await backend.wait_for_invoice_since(1)

    assert exc_info.value.pay_index is None


def test_legacy_msat_strings_are_parsed():
    invoice = Invoice.from_cln({"label": "a", "status": "paid", "amount_received_msat": "21000msat", "pay_index": 2})
    assert invoice.amount_msat == 21000


def test_expired_invoice_has_no_pay_index():
    invoice = Invoice.from_cln({"label": "a", "description": "x", "status": "expired", "amount_msat": 1000})
    assert invoice.status == InvoiceStatus.EXPIRED
    assert invoice.pay_index is None
    assert invoice.amount_msat == 1000


def test_missing_description_becomes_empty():
    invoice = Invoice.from_cln({"label": "offer", "status": "paid", "pay_index": 3})
    assert invoice.description == ""
