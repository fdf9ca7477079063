from __future__ import annotations

import pytest

from relaygraph.core.client import HttpClient
from relaygraph.core.config import HttpConfig
from relaygraph.core.events import Kind
from relaygraph.core.exceptions import InvoiceError, PayEndpointError
from relaygraph.security.ssrf import allow_all
from relaygraph.social.profiles import ProfileMetadata
from relaygraph.zaps.lnurl import LnurlClient, bech32_decode, lud06_to_url, lud16_to_url, resolve_pay_url
from tests.fakes import ALICE, BOB, FakePayServer, fake_invoice, lnurl_encode, make_event

PAY_URL = "https://pay.test/.well-known/lnurlp/bob"


def _client(server: FakePayServer) -> LnurlClient:
    http = HttpClient(HttpConfig(rate_limit_rps=1000.0), url_guard=allow_all, transport=server.transport())
    return LnurlClient(http, invoice_timeout_s=1.0)


def _zap_request():
    return make_event(ALICE, Kind.ZAP_REQUEST, "", [["p", BOB], ["amount", "21000"]])


def test_lud16_resolution():
    assert lud16_to_url("Bob@Pay.Test") == PAY_URL
    assert lud16_to_url("bob@hidden.onion").startswith("http://")
    for bad in ("bob", "@pay.test", "bob@", "bob@pay.test/x"):
        with pytest.raises(ValueError):
            lud16_to_url(bad)


def test_lud06_resolution_and_checksum():
    encoded = lnurl_encode(PAY_URL)
    assert lud06_to_url(encoded) == PAY_URL
    assert lud06_to_url(f"lightning:{encoded.upper()}") == PAY_URL

    corrupted = encoded[:-1] + ("q" if encoded[-1] != "q" else "p")
    with pytest.raises(ValueError):
        bech32_decode(corrupted)


def test_resolve_pay_url_prefers_lud16():
    meta = ProfileMetadata(lud16="bob@pay.test", lud06=lnurl_encode("https://other.test/x"))
    assert resolve_pay_url(meta) == PAY_URL
    assert resolve_pay_url(ProfileMetadata(lud06=lnurl_encode("https://other.test/x"))) == "https://other.test/x"
    with pytest.raises(ValueError):
        resolve_pay_url(ProfileMetadata())


@pytest.mark.anyio
async def test_fetch_pay_params():
    params = await _client(FakePayServer()).fetch_pay_params(PAY_URL)
    assert params.supports_zaps
    assert params.callback == "https://pay.test/lnurlp/callback"
    assert params.accepts(21_000)
    assert not params.accepts(999)


@pytest.mark.anyio
@pytest.mark.parametrize(
    "server",
    [FakePayServer(allows_nostr=False), FakePayServer(nostr_pubkey=None)],
)
async def test_endpoint_without_zap_support(server: FakePayServer):
    with pytest.raises(PayEndpointError):
        await _client(server).fetch_pay_params(PAY_URL)


@pytest.mark.anyio
async def test_unreachable_endpoint():
    with pytest.raises(PayEndpointError):
        await _client(FakePayServer()).fetch_pay_params("https://pay.test/nowhere")


@pytest.mark.anyio
async def test_request_invoice_sends_zap_request():
    server = FakePayServer()
    client = _client(server)
    params = await client.fetch_pay_params(PAY_URL)
    request = _zap_request()

    invoice = await client.request_invoice(params, amount_msat=21_000, zap_request=request)

    assert invoice == fake_invoice(21_000)
    assert server.zap_requests[0]["id"] == request.id
    assert server.requests[-1].url.params["amount"] == "21000"


@pytest.mark.anyio
@pytest.mark.parametrize(
    ("status", "body"),
    [
        (500, {"status": "ERROR", "reason": "node offline"}),
        (200, {"status": "ERROR", "reason": "amount too small"}),
        (200, {"routes": []}),
        (200, {"pr": 12345}),
        (200, {"pr": fake_invoice(99_000)}),
    ],
)
async def test_request_invoice_failures(status, body):
    server = FakePayServer(invoice_status=status, invoice_body=body)
    client = _client(server)
    params = await client.fetch_pay_params(PAY_URL)
    with pytest.raises(InvoiceError):
        await client.request_invoice(params, amount_msat=21_000, zap_request=_zap_request())
    # never retried
    assert sum(1 for r in server.requests if r.url.path == "/lnurlp/callback") == 1
