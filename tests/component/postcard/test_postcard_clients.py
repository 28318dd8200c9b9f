"""
Component Tests for the Outbound HTTP Clients

HTTP is served by httpx.MockTransport handlers.
"""

import base64
import json

import httpx
import pytest

from microservices.postcard_service.clients.billing_client import BillingClient
from microservices.postcard_service.clients.lob_client import LobClient
from microservices.postcard_service.clients.notification_client import NotificationClient
from microservices.postcard_service.clients.task_client import DISPATCH_TASK_TYPE, TaskClient
from microservices.postcard_service.clients.template_client import TemplateClient
from microservices.postcard_service.models import CampaignStatus, VendorErrorCause
from microservices.postcard_service.protocols import BillingError, VendorError


def _lob(handler, **kwargs) -> LobClient:
    return LobClient(
        api_key="test_key",
        base_url="https://lob.test/v1",
        retry_wait=0,
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


class TestLobClient:

    @pytest.mark.asyncio
    async def test_create_sends_auth_and_idempotency_key(self, factory):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers.get("authorization")
            seen["key"] = request.headers.get("idempotency-key")
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=factory.make_lob_postcard("psc_1"))

        body = await _lob(handler).create_postcard({"size": "6x9"}, idempotency_key="postcard-rcp_1-1")

        assert body["id"] == "psc_1"
        assert seen["url"] == "https://lob.test/v1/postcards"
        assert seen["auth"] == "Basic " + base64.b64encode(b"test_key:").decode()
        assert seen["key"] == "postcard-rcp_1-1"
        assert seen["body"] == {"size": "6x9"}

    @pytest.mark.asyncio
    async def test_error_body_is_classified(self):
        def handler(request):
            return httpx.Response(422, json={"error": {
                "message": "address_line1 is invalid", "status_code": 422, "code": "invalid_address",
            }})

        with pytest.raises(VendorError) as exc_info:
            await _lob(handler).create_postcard({})

        assert exc_info.value.cause == VendorErrorCause.INVALID_ADDRESS
        assert exc_info.value.code == "invalid_address"
        assert exc_info.value.status_code == 422

    @pytest.mark.asyncio
    async def test_create_is_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(500, json={"error": {"message": "internal"}})

        with pytest.raises(VendorError):
            await _lob(handler).create_postcard({})
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_get_retries_server_errors(self, factory):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) < 3:
                return httpx.Response(503)
            return httpx.Response(200, json=factory.make_lob_postcard("psc_9"))

        body = await _lob(handler).get_postcard("psc_9")

        assert body["id"] == "psc_9"
        assert len(calls) == 3
        assert calls[0].url.path == "/v1/postcards/psc_9"

    @pytest.mark.asyncio
    async def test_get_gives_up_after_max_retries(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(500)

        with pytest.raises(VendorError) as exc_info:
            await _lob(handler, max_retries=2).get_postcard("psc_9")
        assert exc_info.value.cause == VendorErrorCause.SERVER_ERROR
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_get_does_not_retry_client_errors(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(404, json={"error": {"message": "postcard not found", "status_code": 404}})

        with pytest.raises(VendorError):
            await _lob(handler).get_postcard("psc_missing")
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(VendorError) as exc_info:
            await _lob(handler).verify_us_address({"primary_line": "1 Main St"})
        assert exc_info.value.cause == VendorErrorCause.NETWORK

    @pytest.mark.asyncio
    async def test_unconfigured(self):
        client = LobClient(api_key=None)
        assert not client.is_configured
        with pytest.raises(VendorError):
            await client.create_postcard({})


class TestBillingClient:

    @pytest.fixture(autouse=True)
    def billing_env(self, monkeypatch):
        monkeypatch.setenv("BILLING_SERVICE_HOST", "billing.test")
        monkeypatch.setenv("BILLING_SERVICE_PORT", "8216")

    @pytest.mark.asyncio
    async def test_balance(self):
        def handler(request):
            assert request.url.path == "/api/v1/billing/balance/org_1"
            return httpx.Response(200, json={"balance_cents": 500})

        client = BillingClient(transport=httpx.MockTransport(handler))

        assert await client.has_sufficient_balance("org_1", 500)
        assert not await client.has_sufficient_balance("org_1", 501)

    @pytest.mark.asyncio
    async def test_balance_unavailable(self):
        client = BillingClient(transport=httpx.MockTransport(lambda request: httpx.Response(503)))
        with pytest.raises(BillingError):
            await client.has_sufficient_balance("org_1", 100)

    @pytest.mark.asyncio
    async def test_charge_uses_campaign_idempotency_key(self, factory):
        seen = {}

        def handler(request):
            seen.update(json.loads(request.content))
            return httpx.Response(200, json={"transaction_id": "txn_1"})

        campaign = factory.make_campaign()
        client = BillingClient(transport=httpx.MockTransport(handler))

        result = await client.charge_for_campaign(campaign, 210)

        assert result.success
        assert result.transaction_id == "txn_1"
        assert seen["amount_cents"] == 210
        assert seen["idempotency_key"] == f"postcard-campaign-{campaign.campaign_id}"
        assert seen["actor"] == campaign.created_by

    @pytest.mark.asyncio
    async def test_rejected_charge(self, factory):
        client = BillingClient(transport=httpx.MockTransport(lambda request: httpx.Response(402)))
        result = await client.charge_for_campaign(factory.make_campaign(), 210)
        assert not result.success
        assert result.error == "HTTP 402"


class TestTemplateClient:

    @pytest.mark.asyncio
    async def test_render(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"html": "<html>front</html>"})

        client = TemplateClient(transport=httpx.MockTransport(handler))
        html = await client.render("tpl_1", "front", {"first_name": "Jane"})

        assert html == "<html>front</html>"
        assert seen["path"] == "/api/v1/templates/tpl_1/render"
        assert seen["body"] == {"side": "front", "data": {"first_name": "Jane"}}

    @pytest.mark.asyncio
    async def test_render_failure_raises(self):
        client = TemplateClient(transport=httpx.MockTransport(lambda request: httpx.Response(404)))
        with pytest.raises(httpx.HTTPStatusError):
            await client.render("tpl_missing", "back", {})


class TestNotificationClient:

    @pytest.mark.asyncio
    async def test_result_email(self, factory):
        seen = {}

        def handler(request):
            seen.update(json.loads(request.content))
            return httpx.Response(200, json={"notification_id": "ntf_1"})

        campaign = factory.make_campaign(sent_count=2, failed_count=1, actual_cost_cents=210)
        client = NotificationClient(transport=httpx.MockTransport(handler))

        assert await client.notify_campaign_result(campaign, CampaignStatus.COMPLETED_WITH_ERRORS)
        assert seen["user_id"] == campaign.created_by
        assert seen["content"]["template"] == "postcard_campaign_sent"
        assert seen["content"]["variables"]["actual_cost"] == "$2.10"

    @pytest.mark.asyncio
    async def test_failure_is_swallowed(self, factory):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        client = NotificationClient(transport=httpx.MockTransport(handler))
        result = await client.notify_campaign_result(factory.make_campaign(), CampaignStatus.FAILED, "boom")
        assert result is False


class TestTaskClient:

    @pytest.mark.asyncio
    async def test_dispatch_task_carries_callback(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(201, json={"task_id": "tsk_7"})

        client = TaskClient(transport=httpx.MockTransport(handler))
        task_id = await client.create_dispatch_task("pcm_1", "org_1")

        assert task_id == "tsk_7"
        assert seen["path"] == "/api/v1/tasks"
        body = seen["body"]
        assert body["task_type"] == DISPATCH_TASK_TYPE
        assert body["idempotency_key"] == "postcard-dispatch-pcm_1"
        assert body["payload"] == {
            "campaign_id": "pcm_1",
            "organization_id": "org_1",
            "callback_service": "postcard_service",
            "callback_method": "POST",
            "callback_path": "/internal/postcards/dispatch/pcm_1",
        }
        assert "scheduled_at" in body

    @pytest.mark.asyncio
    async def test_missing_task_id(self):
        client = TaskClient(transport=httpx.MockTransport(lambda request: httpx.Response(200, json={})))
        with pytest.raises(ValueError):
            await client.create_dispatch_task("pcm_1", "org_1")

    @pytest.mark.asyncio
    async def test_rejection_raises(self):
        client = TaskClient(transport=httpx.MockTransport(lambda request: httpx.Response(503)))
        with pytest.raises(httpx.HTTPStatusError):
            await client.create_dispatch_task("pcm_1", "org_1")
