"""
Component Tests for DispatchOrchestrator

Batch send against a scripted vendor: per-recipient failure isolation,
finalization, one-time billing and setup aborts.
"""

from datetime import datetime, timezone

import pytest

from core.nats_client import EventType
from microservices.postcard_service.models import CampaignStatus, RecipientStatus, VendorErrorCause
from microservices.postcard_service.protocols import (
    ArtworkUnavailableError,
    DispatchInProgressError,
    DispatchSetupError,
    NotSendableError,
    VendorError,
)
from microservices.postcard_service.vendor_errors import USER_MESSAGES, build_vendor_error


class TestDispatchBatch:

    @pytest.mark.asyncio
    async def test_partial_failure_completes_with_errors(
        self, dispatcher, processing_campaign, fake_lob, mock_repository,
        mock_billing, mock_notifier, sleep_recorder, factory,
    ):
        campaign, recipients = processing_campaign
        fake_lob.queue_create(
            factory.make_lob_postcard("psc_first"),
            build_vendor_error("address is invalid", status_code=422, code="invalid_address"),
            factory.make_lob_postcard("psc_third"),
        )

        result = await dispatcher.dispatch(campaign.campaign_id)

        assert result.final_status == CampaignStatus.COMPLETED_WITH_ERRORS
        assert (result.attempted, result.sent, result.failed) == (3, 2, 1)
        assert result.actual_cost_cents == 210
        assert result.charged

        stored = mock_repository.campaigns[campaign.campaign_id]
        assert stored.sent_count == 2
        assert stored.failed_count == 1
        assert stored.charged_at is not None
        assert stored.completed_at is not None

        failed = mock_repository.recipients[recipients[1].recipient_id]
        assert failed.status == RecipientStatus.FAILED
        assert failed.send_error == USER_MESSAGES[VendorErrorCause.INVALID_ADDRESS]
        assert failed.vendor_object_id is None

        sent = mock_repository.recipients[recipients[0].recipient_id]
        assert sent.status == RecipientStatus.SENT
        assert sent.vendor_object_id == "psc_first"
        assert sent.actual_cost_cents == 105
        assert sent.vendor_response["id"] == "psc_first"

        assert mock_billing.charges == [{"campaign_id": campaign.campaign_id, "amount_cents": 210}]
        assert mock_notifier.notifications[0]["status"] == CampaignStatus.COMPLETED_WITH_ERRORS
        assert sleep_recorder.delays == [0.1, 0.1]

    @pytest.mark.asyncio
    async def test_sends_in_creation_order_with_idempotency_keys(
        self, dispatcher, processing_campaign, fake_lob
    ):
        campaign, recipients = processing_campaign

        await dispatcher.dispatch(campaign.campaign_id)

        keys = [call["idempotency_key"] for call in fake_lob.create_calls]
        assert keys == [f"postcard-{r.recipient_id}-1" for r in recipients]
        metadata = fake_lob.create_calls[0]["payload"]["metadata"]
        assert metadata["campaign_id"] == campaign.campaign_id
        assert metadata["tenant_id"] == campaign.organization_id

    @pytest.mark.asyncio
    async def test_all_failed_fails_campaign(
        self, dispatcher, mock_repository, org_id, org_settings, fake_lob, mock_billing, mock_notifier, factory
    ):
        campaign = mock_repository.seed_campaign(
            factory.make_campaign(status=CampaignStatus.PROCESSING, organization_id=org_id)
        )
        recipient = mock_repository.seed_recipient(factory.make_recipient(campaign))
        fake_lob.queue_create(VendorError(
            "ReadTimeout: timed out",
            cause=VendorErrorCause.TIMEOUT,
            user_message=USER_MESSAGES[VendorErrorCause.TIMEOUT],
            retryable=True,
        ))

        result = await dispatcher.dispatch(campaign.campaign_id)

        assert result.final_status == CampaignStatus.FAILED
        assert not result.charged
        assert mock_billing.charges == []
        assert mock_repository.recipients[recipient.recipient_id].send_error == USER_MESSAGES[VendorErrorCause.TIMEOUT]
        assert mock_notifier.notifications[0]["status"] == CampaignStatus.FAILED

    @pytest.mark.asyncio
    async def test_missing_price_uses_unit_cost(self, dispatcher, processing_campaign, fake_lob, factory):
        campaign, _ = processing_campaign
        fake_lob.queue_create(*[factory.make_lob_postcard(price=None) for _ in range(3)])

        result = await dispatcher.dispatch(campaign.campaign_id)

        assert result.actual_cost_cents == 315

    @pytest.mark.asyncio
    async def test_suppressed_recipients_are_skipped(
        self, dispatcher, mock_repository, org_id, org_settings, fake_lob, factory
    ):
        campaign = mock_repository.seed_campaign(
            factory.make_campaign(status=CampaignStatus.PROCESSING, organization_id=org_id)
        )
        mock_repository.seed_recipient(factory.make_recipient(campaign))
        skipped = mock_repository.seed_recipient(factory.make_recipient(
            campaign, suppressed=True, suppression_reason="On do-not-mail list"
        ))

        result = await dispatcher.dispatch(campaign.campaign_id)

        assert result.attempted == 1
        assert len(fake_lob.create_calls) == 1
        assert mock_repository.recipients[skipped.recipient_id].status == RecipientStatus.PENDING
        assert result.final_status == CampaignStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_suppression_override_sends_everyone(
        self, dispatcher, mock_repository, org_id, org_settings, fake_lob, factory
    ):
        campaign = mock_repository.seed_campaign(factory.make_campaign(
            status=CampaignStatus.PROCESSING, organization_id=org_id, suppression_override=True
        ))
        mock_repository.seed_recipient(factory.make_recipient(campaign, suppressed=True))

        result = await dispatcher.dispatch(campaign.campaign_id)

        assert result.sent == 1

    @pytest.mark.asyncio
    async def test_profile_last_mailed_is_stamped(
        self, dispatcher, mock_repository, org_id, org_settings, factory
    ):
        campaign = mock_repository.seed_campaign(
            factory.make_campaign(status=CampaignStatus.PROCESSING, organization_id=org_id)
        )
        mock_repository.seed_recipient(factory.make_recipient(campaign, profile_id="prf_1"))

        await dispatcher.dispatch(campaign.campaign_id)

        assert "prf_1" in mock_repository.mailed

    @pytest.mark.asyncio
    async def test_events(self, dispatcher, processing_campaign, mock_event_bus):
        campaign, _ = processing_campaign

        await dispatcher.dispatch(campaign.campaign_id)

        types = mock_event_bus.get_types()
        assert types.count(EventType.RECIPIENT_SENT.value) == 3
        assert EventType.CAMPAIGN_COMPLETED.value in types
        charged = mock_event_bus.get_published(EventType.CAMPAIGN_CHARGED.value)
        assert charged[0]["data"]["amount_cents"] == 315


class TestIntegrity:

    @pytest.mark.asyncio
    async def test_reused_vendor_id_is_not_recorded_twice(
        self, dispatcher, processing_campaign, fake_lob, mock_repository, mock_event_bus, factory
    ):
        campaign, recipients = processing_campaign
        fake_lob.queue_create(
            factory.make_lob_postcard("psc_dup"),
            factory.make_lob_postcard("psc_dup"),
        )

        result = await dispatcher.dispatch(campaign.campaign_id)

        assert result.integrity_errors == 1
        assert result.sent == 2
        collided = mock_repository.recipients[recipients[1].recipient_id]
        assert collided.status == RecipientStatus.FAILED
        assert collided.vendor_object_id is None
        assert collided.send_error.startswith("Data integrity error: vendor postcard psc_dup")

        owners = [r for r in mock_repository.recipients.values() if r.vendor_object_id == "psc_dup"]
        assert [r.recipient_id for r in owners] == [recipients[0].recipient_id]

        violations = mock_event_bus.get_published(EventType.INTEGRITY_VIOLATION.value)
        assert violations[0]["data"]["vendor_object_id"] == "psc_dup"
        assert result.final_status == CampaignStatus.COMPLETED_WITH_ERRORS


class TestSetupAndGuards:

    @pytest.mark.asyncio
    async def test_missing_return_address_aborts_before_vendor(
        self, dispatcher, mock_repository, org_id, fake_lob, mock_notifier, factory
    ):
        campaign = mock_repository.seed_campaign(
            factory.make_campaign(status=CampaignStatus.PROCESSING, organization_id=org_id)
        )
        mock_repository.seed_recipient(factory.make_recipient(campaign))

        with pytest.raises(DispatchSetupError):
            await dispatcher.dispatch(campaign.campaign_id)

        assert fake_lob.create_calls == []
        assert mock_repository.campaigns[campaign.campaign_id].status == CampaignStatus.FAILED
        assert "Return address" in mock_notifier.notifications[0]["error"]
        assert not dispatcher.is_dispatching(campaign.campaign_id)

    @pytest.mark.asyncio
    async def test_localhost_pdf_aborts(
        self, dispatcher, mock_repository, org_id, org_settings, fake_lob, factory
    ):
        campaign = mock_repository.seed_campaign(factory.make_campaign(
            status=CampaignStatus.PROCESSING,
            organization_id=org_id,
            front_pdf_url="http://localhost:8000/assets/front.pdf",
            back_pdf_url="http://localhost:8000/assets/back.pdf",
        ))
        mock_repository.seed_recipient(factory.make_recipient(campaign))

        with pytest.raises(ArtworkUnavailableError):
            await dispatcher.dispatch(campaign.campaign_id)

        assert fake_lob.create_calls == []

    @pytest.mark.asyncio
    async def test_not_processing_is_skipped(self, dispatcher, mock_repository, fake_lob, factory):
        campaign = mock_repository.seed_campaign(factory.make_campaign(status=CampaignStatus.COMPLETED))

        result = await dispatcher.dispatch(campaign.campaign_id)

        assert result.skipped
        assert result.final_status == CampaignStatus.COMPLETED
        assert fake_lob.create_calls == []

    @pytest.mark.asyncio
    async def test_concurrent_dispatch_rejected(self, dispatcher, processing_campaign):
        campaign, _ = processing_campaign
        dispatcher._active.add(campaign.campaign_id)

        with pytest.raises(DispatchInProgressError):
            await dispatcher.dispatch(campaign.campaign_id)


class TestBilling:

    @pytest.mark.asyncio
    async def test_rerun_does_not_charge_again(self, dispatcher, processing_campaign, mock_billing):
        campaign, _ = processing_campaign

        await dispatcher.dispatch(campaign.campaign_id)
        again = await dispatcher.dispatch(campaign.campaign_id)

        assert again.skipped
        assert len(mock_billing.charges) == 1

    @pytest.mark.asyncio
    async def test_already_charged_campaign_is_not_charged(
        self, dispatcher, mock_repository, org_id, org_settings, mock_billing, factory
    ):
        campaign = mock_repository.seed_campaign(factory.make_campaign(
            status=CampaignStatus.PROCESSING,
            organization_id=org_id,
            charged_at=datetime.now(timezone.utc),
        ))
        mock_repository.seed_recipient(factory.make_recipient(campaign))

        result = await dispatcher.dispatch(campaign.campaign_id)

        assert not result.charged
        assert mock_billing.charges == []

    @pytest.mark.asyncio
    async def test_rejected_charge_leaves_campaign_completed(
        self, dispatcher, processing_campaign, mock_repository, mock_billing
    ):
        campaign, _ = processing_campaign
        mock_billing.fail_charge = True

        result = await dispatcher.dispatch(campaign.campaign_id)

        assert result.final_status == CampaignStatus.COMPLETED
        assert not result.charged
        assert mock_repository.campaigns[campaign.campaign_id].charged_at is None


class TestRetryRecipient:

    @pytest.mark.asyncio
    async def test_retry_failed_recipient(
        self, dispatcher, mock_repository, org_id, org_settings, fake_lob, factory
    ):
        campaign = mock_repository.seed_campaign(factory.make_campaign(
            status=CampaignStatus.COMPLETED_WITH_ERRORS, organization_id=org_id
        ))
        mock_repository.seed_recipient(factory.make_recipient(
            campaign, status=RecipientStatus.SENT, vendor_object_id="psc_ok", actual_cost_cents=105
        ))
        failed = mock_repository.seed_recipient(factory.make_recipient(
            campaign, status=RecipientStatus.FAILED, send_attempts=1, send_error="Invalid Address"
        ))
        fake_lob.queue_create(factory.make_lob_postcard("psc_retry"))

        retried = await dispatcher.retry_recipient(failed.recipient_id, org_id)

        assert retried.status == RecipientStatus.SENT
        assert retried.vendor_object_id == "psc_retry"
        assert retried.send_attempts == 2
        assert fake_lob.create_calls[0]["idempotency_key"] == f"postcard-{failed.recipient_id}-2"

        stored = mock_repository.campaigns[campaign.campaign_id]
        assert stored.sent_count == 2
        assert stored.failed_count == 0
        assert stored.actual_cost_cents == 210

    @pytest.mark.asyncio
    async def test_retry_requires_sent_campaign(self, dispatcher, mock_repository, org_id, factory):
        campaign = mock_repository.seed_campaign(factory.make_campaign(organization_id=org_id))
        recipient = mock_repository.seed_recipient(
            factory.make_recipient(campaign, status=RecipientStatus.FAILED)
        )

        with pytest.raises(NotSendableError):
            await dispatcher.retry_recipient(recipient.recipient_id)
