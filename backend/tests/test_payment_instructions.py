"""
Tests for the payment instructions API client
"""

import json

import httpx
import pytest

from app.core.config import settings
from app.services.payment_instructions import (
    PaymentInstructionsClient,
    PaymentInstructionsConfigError,
    PaymentInstructionsError,
)

BASE_URL = "https://pinata.example/api"


def _client(handler, **kwargs):
    return PaymentInstructionsClient(
        base_url=BASE_URL,
        auth_token="jwt-token",
        transport=httpx.MockTransport(handler),
        **kwargs
    )


class TestConstruction:

    @pytest.fixture(autouse=True)
    def clear_env_credentials(self, monkeypatch):
        monkeypatch.setattr(settings, "PINATA_JWT_TOKEN", None)
        monkeypatch.setattr(settings, "PINATA_BACKEND_API_URL", None)

    def test_missing_token_raises(self):
        with pytest.raises(PaymentInstructionsConfigError, match="PINATA_JWT_TOKEN"):
            PaymentInstructionsClient(base_url=BASE_URL)

    def test_missing_base_url_raises(self):
        with pytest.raises(PaymentInstructionsConfigError, match="PINATA_BACKEND_API_URL"):
            PaymentInstructionsClient(auth_token="jwt-token")

    def test_falls_back_to_settings(self, monkeypatch):
        monkeypatch.setattr(settings, "PINATA_JWT_TOKEN", "env-token")
        monkeypatch.setattr(settings, "PINATA_BACKEND_API_URL", BASE_URL + "/")

        client = PaymentInstructionsClient()

        assert client.auth_token == "env-token"
        assert client.base_url == BASE_URL

    def test_config_error_is_a_payment_instructions_error(self):
        assert issubclass(PaymentInstructionsConfigError, PaymentInstructionsError)


class TestRequests:

    @pytest.mark.asyncio
    async def test_map_cid_puts_mapping(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(204)

        await _client(handler).map_cid("free-1", "bafycid")

        assert len(requests) == 1
        assert requests[0].method == "PUT"
        assert str(requests[0].url) == f"{BASE_URL}/v3/x402/payment_instructions/free-1/cids/bafycid"
        assert requests[0].headers["Authorization"] == "Bearer jwt-token"

    @pytest.mark.asyncio
    async def test_map_cid_error_raises_with_status(self):
        def handler(request):
            return httpx.Response(404, text="payment instruction not found")

        with pytest.raises(PaymentInstructionsError) as exc_info:
            await _client(handler).map_cid("missing", "bafycid")

        assert exc_info.value.status_code == 404
        assert "payment instruction not found" in str(exc_info.value)
        assert "map CID to payment instruction" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_transport_errors_propagate(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(httpx.ConnectError):
            await _client(handler).map_cid("free-1", "bafycid")

    @pytest.mark.asyncio
    async def test_unmap_cid_deletes_mapping(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(204)

        await _client(handler).unmap_cid("p1", "bafycid")

        assert requests[0].method == "DELETE"
        assert requests[0].url.path.endswith("/v3/x402/payment_instructions/p1/cids/bafycid")

    @pytest.mark.asyncio
    async def test_create_posts_payload(self):
        payload = {
            "name": "Payment for Entry",
            "payment_requirements": [{
                "pay_to": "0x742d35Cc6634C0532925a3b844Bc9e7595f0bEb",
                "network": "base",
                "asset": "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913",
                "max_amount_required": "1000000",
            }],
        }

        def handler(request):
            assert request.method == "POST"
            assert json.loads(request.content) == payload
            return httpx.Response(201, json={"data": {"id": "p-new", **payload}})

        response = await _client(handler).create(payload)

        assert response["data"]["id"] == "p-new"

    @pytest.mark.asyncio
    async def test_get_and_delete(self):
        seen = []

        def handler(request):
            seen.append((request.method, request.url.path))
            if request.method == "GET":
                return httpx.Response(200, json={"data": {"id": "p1"}})
            return httpx.Response(204)

        client = _client(handler)
        response = await client.get("p1")
        await client.delete("p1")

        assert response == {"data": {"id": "p1"}}
        assert seen == [
            ("GET", "/api/v3/x402/payment_instructions/p1"),
            ("DELETE", "/api/v3/x402/payment_instructions/p1"),
        ]
