"""Tests for WhatsApp delivery, using httpx.MockTransport."""

import json

import httpx
import pytest

from medscan.errors import ConfigurationError, DeliveryError
from medscan.intake.schema import ServiceType
from medscan.services.messaging import WhatsAppClient, build_caption, normalize_recipient


def make_client(handler, **kwargs) -> WhatsAppClient:
    return WhatsAppClient(
        "https://graph.test/v19.0/",
        "PHONE_ID",
        "TOKEN",
        retries=kwargs.pop("retries", 1),
        backoff=0,
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


def ok(request):
    return httpx.Response(200, json={"messages": [{"id": "wamid.ABC"}]})


@pytest.mark.parametrize("raw,expected", [
    ("9876543210", "+919876543210"),
    ("98765 43210", "+919876543210"),
    ("919876543210", "+919876543210"),
    ("+44 7700 900123", "+447700900123"),
])
def test_normalize_recipient(raw, expected):
    assert normalize_recipient(raw) == expected


def test_empty_recipient_rejected():
    with pytest.raises(DeliveryError):
        normalize_recipient("")


def test_caption():
    caption = build_caption("Asha Rao", 78, ServiceType.FACIAL)

    assert "Asha Rao" in caption
    assert "78/100" in caption
    assert "Facial Analysis" in caption


@pytest.mark.asyncio
async def test_send_document_payload():
    seen = []

    def handler(request):
        seen.append(request)
        return ok(request)

    client = make_client(handler)
    receipt = await client.send_document(
        "9876543210", "https://cdn.test/report.pdf", "caption", "Asha Rao_facial_2026-01-02.pdf"
    )

    assert receipt.recipient == "+919876543210"
    assert receipt.message_id == "wamid.ABC"
    request = seen[0]
    assert str(request.url) == "https://graph.test/v19.0/PHONE_ID/messages"
    assert request.headers["Authorization"] == "Bearer TOKEN"
    body = json.loads(request.content)
    assert body["to"] == "+919876543210"
    assert body["type"] == "document"
    assert body["document"] == {
        "link": "https://cdn.test/report.pdf",
        "caption": "caption",
        "filename": "Asha Rao_facial_2026-01-02.pdf",
    }


@pytest.mark.asyncio
async def test_server_error_retried_once():
    responses = [httpx.Response(503, json={"error": "busy"}), None]

    def handler(request):
        response = responses.pop(0)
        return response if response is not None else ok(request)

    receipt = await make_client(handler).send_document("9876543210", "u", "c", "f.pdf")

    assert receipt.message_id == "wamid.ABC"
    assert responses == []


@pytest.mark.asyncio
async def test_client_error_not_retried():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(401, json={"error": {"message": "Invalid OAuth access token"}})

    with pytest.raises(DeliveryError) as exc_info:
        await make_client(handler).send_document("9876543210", "u", "c", "f.pdf")

    assert not exc_info.value.transient
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_unexpected_response_body():
    client = make_client(lambda request: httpx.Response(200, json={"ok": True}))

    with pytest.raises(DeliveryError):
        await client.send_document("9876543210", "u", "c", "f.pdf")


@pytest.mark.asyncio
async def test_missing_credentials():
    client = WhatsAppClient("https://graph.test/v19.0", None, None)

    assert not client.is_configured
    with pytest.raises(ConfigurationError):
        await client.send_document("9876543210", "u", "c", "f.pdf")
