import asyncio

import pytest
from sqlalchemy.future import select

from models.credit_transaction import CreditTransaction
from models.credit_usage_log import CreditUsageLog
from services.campaigns import CampaignLifecycle, estimate_credits
from services.credits import CreditLedger
from services.errors import InsufficientCreditsError, InvalidStateTransitionError, NotFoundError


async def _ledger_entries(session, business_id):
    result = await session.execute(
        select(CreditTransaction)
        .where(CreditTransaction.business_id == business_id)
        .order_by(CreditTransaction.created_at.asc())
    )
    return [(t.transaction_type, t.amount) for t in result.scalars().all()]


async def _new_campaign(session, business_id, campaign_type="video", settings=None):
    campaign = await CampaignLifecycle(session).create_campaign(
        business_id=business_id,
        user_id="owner-user",
        name="Autumn launch",
        campaign_type=campaign_type,
        prompt="A cozy coffee shop at dawn",
        settings=settings,
    )
    return campaign.id


def test_estimate_credits_applies_type_quality_duration_and_resolution():
    assert estimate_credits(None) == 0
    assert estimate_credits("video") == 10
    assert estimate_credits("image") == 5
    assert estimate_credits("script") == 3
    assert estimate_credits("hologram") == 1
    assert estimate_credits("video", {"duration": 30}) == 10
    assert estimate_credits("video", {"duration": 45}) == 15
    assert estimate_credits("video", {"duration": "90"}) == 20
    assert estimate_credits("video", {"duration": "soon"}) == 10
    assert estimate_credits("video", {"quality": "high", "duration": 45}) == 23
    assert estimate_credits("video", {"quality": "premium"}) == 20
    assert estimate_credits("image", {"resolution": "4K"}) == 8
    assert estimate_credits("image", {"resolution": "8k", "quality": "high"}) == 15
    assert estimate_credits("script", {"duration": 120}) == 3


@pytest.mark.asyncio
async def test_create_campaign_starts_as_draft_with_estimate(session_maker, seed_business):
    business_id = await seed_business(credits=50)

    async with session_maker() as session:
        campaign_id = await _new_campaign(session, business_id, settings={"duration": 45})
        campaign = await CampaignLifecycle(session).get_campaign(campaign_id, business_id)

        assert campaign.status == "draft"
        assert campaign.estimated_credits == 15
        assert campaign.credits_used == 0
        assert campaign.settings_json == {"duration": 45}
        assert (await CreditLedger(session).get_balance(business_id)).credits == 50


@pytest.mark.asyncio
async def test_create_campaign_for_unknown_business_raises_not_found(db_session):
    with pytest.raises(NotFoundError):
        await _new_campaign(db_session, "missing")


@pytest.mark.asyncio
async def test_start_then_fail_restores_balance(session_maker, seed_business):
    business_id = await seed_business(credits=50)

    async with session_maker() as session:
        lifecycle = CampaignLifecycle(session)
        campaign_id = await _new_campaign(session, business_id)

        started = await lifecycle.start_campaign(campaign_id)
        assert started.status == "in_progress"
        assert started.credits_used == 10
        assert started.started_at is not None
        assert (await lifecycle.ledger.get_balance(business_id)).credits == 40

        failed = await lifecycle.fail_campaign(campaign_id, error_message="renderer timed out")
        assert failed.status == "failed"
        assert failed.error_message == "renderer timed out"
        assert failed.metadata_json["error_message"] == "renderer timed out"
        assert "failed_at" in failed.metadata_json
        assert (await lifecycle.ledger.get_balance(business_id)).credits == 50

        assert await _ledger_entries(session, business_id) == [("bonus", 50), ("usage", -10), ("refund", 10)]
        logs = (await session.execute(select(CreditUsageLog))).scalars().all()
        assert [(log.campaign_id, log.action_type) for log in logs] == [(campaign_id, "campaign_start")]


@pytest.mark.asyncio
async def test_complete_with_fewer_credits_refunds_difference(session_maker, seed_business):
    business_id = await seed_business(credits=50)

    async with session_maker() as session:
        lifecycle = CampaignLifecycle(session)
        campaign_id = await _new_campaign(session, business_id)
        await lifecycle.start_campaign(campaign_id)

        completed = await lifecycle.complete_campaign(
            campaign_id,
            actual_credits_used=7,
            output_urls=["https://cdn.example.com/ad.mp4"],
            thumbnail_url="https://cdn.example.com/ad.jpg",
            metadata={"render_seconds": 42},
        )

        assert completed.status == "completed"
        assert completed.credits_used == 7
        assert completed.output_urls == ["https://cdn.example.com/ad.mp4"]
        assert completed.thumbnail_url == "https://cdn.example.com/ad.jpg"
        assert completed.metadata_json == {"render_seconds": 42}
        assert completed.completed_at is not None
        assert (await lifecycle.ledger.get_balance(business_id)).credits == 43
        assert await _ledger_entries(session, business_id) == [("bonus", 50), ("usage", -10), ("refund", 3)]


@pytest.mark.asyncio
async def test_complete_without_actual_keeps_reservation(session_maker, seed_business):
    business_id = await seed_business(credits=50)

    async with session_maker() as session:
        lifecycle = CampaignLifecycle(session)
        campaign_id = await _new_campaign(session, business_id, campaign_type="script")
        await lifecycle.start_campaign(campaign_id)
        completed = await lifecycle.complete_campaign(campaign_id)

        assert completed.credits_used == 3
        assert (await lifecycle.ledger.get_balance(business_id)).credits == 47
        assert await _ledger_entries(session, business_id) == [("bonus", 50), ("usage", -3)]


@pytest.mark.asyncio
async def test_complete_with_overrun_charges_the_extra(session_maker, seed_business):
    business_id = await seed_business(credits=50)

    async with session_maker() as session:
        lifecycle = CampaignLifecycle(session)
        campaign_id = await _new_campaign(session, business_id)
        await lifecycle.start_campaign(campaign_id)
        completed = await lifecycle.complete_campaign(campaign_id, actual_credits_used=14)

        assert completed.credits_used == 14
        assert (await lifecycle.ledger.get_balance(business_id)).credits == 36
        assert await _ledger_entries(session, business_id) == [("bonus", 50), ("usage", -10), ("usage", -4)]


@pytest.mark.asyncio
async def test_overrun_beyond_balance_leaves_campaign_in_progress(session_maker, seed_business):
    business_id = await seed_business(credits=12)

    async with session_maker() as session:
        lifecycle = CampaignLifecycle(session)
        campaign_id = await _new_campaign(session, business_id)
        await lifecycle.start_campaign(campaign_id)

        with pytest.raises(InsufficientCreditsError):
            await lifecycle.complete_campaign(campaign_id, actual_credits_used=20)

        campaign = await lifecycle.get_campaign(campaign_id)
        assert campaign.status == "in_progress"
        assert campaign.credits_used == 10
        assert (await lifecycle.ledger.get_balance(business_id)).credits == 2


@pytest.mark.asyncio
async def test_start_without_enough_credits_stays_draft(session_maker, seed_business):
    business_id = await seed_business(credits=4)

    async with session_maker() as session:
        lifecycle = CampaignLifecycle(session)
        campaign_id = await _new_campaign(session, business_id, campaign_type="image")

        with pytest.raises(InsufficientCreditsError):
            await lifecycle.start_campaign(campaign_id)

        campaign = await lifecycle.get_campaign(campaign_id)
        assert campaign.status == "draft"
        assert campaign.credits_used == 0
        assert campaign.started_at is None
        assert await _ledger_entries(session, business_id) == [("bonus", 4)]


@pytest.mark.asyncio
async def test_second_failure_is_rejected_without_second_refund(session_maker, seed_business):
    business_id = await seed_business(credits=50)

    async with session_maker() as session:
        lifecycle = CampaignLifecycle(session)
        campaign_id = await _new_campaign(session, business_id)
        await lifecycle.start_campaign(campaign_id)
        await lifecycle.fail_campaign(campaign_id, error_message="first")

        with pytest.raises(InvalidStateTransitionError) as exc_info:
            await lifecycle.fail_campaign(campaign_id, error_message="second")
        assert exc_info.value.current_status == "failed"

        assert (await lifecycle.ledger.get_balance(business_id)).credits == 50
        refunds = [entry for entry in await _ledger_entries(session, business_id) if entry[0] == "refund"]
        assert refunds == [("refund", 10)]


@pytest.mark.asyncio
async def test_transitions_out_of_order_are_rejected(session_maker, seed_business):
    business_id = await seed_business(credits=50)

    async with session_maker() as session:
        lifecycle = CampaignLifecycle(session)
        campaign_id = await _new_campaign(session, business_id)

        with pytest.raises(InvalidStateTransitionError):
            await lifecycle.complete_campaign(campaign_id)
        with pytest.raises(InvalidStateTransitionError):
            await lifecycle.fail_campaign(campaign_id)

        await lifecycle.start_campaign(campaign_id)
        with pytest.raises(InvalidStateTransitionError):
            await lifecycle.start_campaign(campaign_id)

        assert (await lifecycle.ledger.get_balance(business_id)).credits == 40


@pytest.mark.asyncio
async def test_cancel_draft_and_in_progress_campaigns(session_maker, seed_business):
    business_id = await seed_business(credits=50)

    async with session_maker() as session:
        lifecycle = CampaignLifecycle(session)
        draft_id = await _new_campaign(session, business_id)
        running_id = await _new_campaign(session, business_id, campaign_type="image")
        await lifecycle.start_campaign(running_id)
        assert (await lifecycle.ledger.get_balance(business_id)).credits == 45

        cancelled_draft = await lifecycle.cancel_campaign(draft_id)
        cancelled_running = await lifecycle.cancel_campaign(running_id)

        assert cancelled_draft.status == "cancelled"
        assert cancelled_running.status == "cancelled"
        assert (await lifecycle.ledger.get_balance(business_id)).credits == 50
        assert await _ledger_entries(session, business_id) == [("bonus", 50), ("usage", -5), ("refund", 5)]


@pytest.mark.asyncio
async def test_completed_campaign_cannot_be_cancelled(session_maker, seed_business):
    business_id = await seed_business(credits=50)

    async with session_maker() as session:
        lifecycle = CampaignLifecycle(session)
        campaign_id = await _new_campaign(session, business_id)
        await lifecycle.start_campaign(campaign_id)
        await lifecycle.complete_campaign(campaign_id)

        with pytest.raises(InvalidStateTransitionError):
            await lifecycle.cancel_campaign(campaign_id)

        assert (await lifecycle.get_campaign(campaign_id)).status == "completed"
        assert (await lifecycle.ledger.get_balance(business_id)).credits == 40


@pytest.mark.asyncio
async def test_campaign_scoped_to_business(session_maker, seed_business):
    business_id = await seed_business(credits=50)
    await seed_business(business_id="biz-2", user_id="other-user", credits=50)

    async with session_maker() as session:
        lifecycle = CampaignLifecycle(session)
        campaign_id = await _new_campaign(session, business_id)

        with pytest.raises(NotFoundError):
            await lifecycle.get_campaign(campaign_id, "biz-2")
        with pytest.raises(NotFoundError):
            await lifecycle.start_campaign(campaign_id, business_id="biz-2")


@pytest.mark.asyncio
async def test_campaign_listing_and_analytics(session_maker, seed_business):
    business_id = await seed_business(credits=100)

    async with session_maker() as session:
        lifecycle = CampaignLifecycle(session)
        done_id = await _new_campaign(session, business_id)
        failed_id = await _new_campaign(session, business_id, campaign_type="image")
        await _new_campaign(session, business_id, campaign_type="script")

        await lifecycle.start_campaign(done_id)
        await lifecycle.complete_campaign(done_id, actual_credits_used=8)
        await lifecycle.start_campaign(failed_id)
        await lifecycle.fail_campaign(failed_id)

        drafts = await lifecycle.list_campaigns(business_id, status="draft")
        images = await lifecycle.list_campaigns(business_id, campaign_type="image")
        analytics = await lifecycle.get_campaign_analytics(business_id, days=30)

    assert [c.campaign_type for c in drafts] == ["script"]
    assert [c.id for c in images] == [failed_id]
    assert analytics["total_campaigns"] == 3
    assert analytics["completed_campaigns"] == 1
    assert analytics["completion_rate"] == 33.3
    assert analytics["status_distribution"] == {"completed": 1, "failed": 1, "draft": 1}
    assert analytics["type_distribution"] == {"video": 1, "image": 1, "script": 1}


@pytest.mark.asyncio
async def test_racing_transitions_charge_and_refund_once(session_maker, seed_business):
    business_id = await seed_business(credits=100)
    async with session_maker() as session:
        campaign_id = await _new_campaign(session, business_id)

    async def _run_in_own_session(transition, **kwargs):
        async with session_maker() as session:
            campaign = await getattr(CampaignLifecycle(session), transition)(campaign_id, **kwargs)
            return campaign.status

    starts = await asyncio.gather(
        _run_in_own_session("start_campaign"),
        _run_in_own_session("start_campaign"),
        return_exceptions=True,
    )
    assert sorted(r for r in starts if isinstance(r, str)) == ["in_progress"]
    assert [type(r) for r in starts if not isinstance(r, str)] == [InvalidStateTransitionError]

    failures = await asyncio.gather(
        _run_in_own_session("fail_campaign", error_message="worker crashed"),
        _run_in_own_session("fail_campaign", error_message="worker crashed again"),
        return_exceptions=True,
    )
    assert sorted(r for r in failures if isinstance(r, str)) == ["failed"]
    assert [type(r) for r in failures if not isinstance(r, str)] == [InvalidStateTransitionError]

    async with session_maker() as session:
        assert (await CreditLedger(session).get_balance(business_id)).credits == 100
        assert await _ledger_entries(session, business_id) == [("bonus", 100), ("usage", -10), ("refund", 10)]
        assert (await CampaignLifecycle(session).get_campaign(campaign_id)).status == "failed"
