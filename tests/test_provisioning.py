"""Provisioning request handling."""

import pytest
from sqlalchemy import func, select

from gamecloud.common.errors import UpstreamPaymentError, ValidationError
from gamecloud.services.ledger.models import Server
from gamecloud.services.provisioning.service import ProvisioningService

from conftest import FakeProcessor


@pytest.mark.asyncio
async def test_request_creates_installing_server_with_open_payment(provisioning, processor, store):
    result = await provisioning.request_server("user-42", "minecraft", "fra", 2)

    assert result.server.status == "installing"
    assert result.payment.status == "requires_payment_method"
    assert result.payment.amount_cents == 500
    assert result.payment.currency == "eur"
    assert result.client_token.startswith(result.payment.payment_intent_ref)

    assert len(processor.calls) == 1
    call = processor.calls[0]
    assert call["amount_cents"] == 500
    assert call["metadata"]["server_id"] == result.server.server_id
    assert call["metadata"]["payment_id"] == result.payment.payment_id

    stored = store.get_payment_for_server(result.server.server_id)
    assert stored.payment_intent_ref == result.payment.payment_intent_ref
    assert store.get_server_status(result.server.server_id) == "installing"


@pytest.mark.asyncio
@pytest.mark.parametrize("tier,amount", [(1, 250), (2, 500), (3, 1000)])
async def test_price_follows_tier(provisioning, tier, amount):
    result = await provisioning.request_server("user-1", "valheim", "ams", tier)

    assert result.payment.amount_cents == amount


@pytest.mark.asyncio
async def test_validation_lists_every_bad_field_without_side_effects(provisioning, processor, session_factory):
    with pytest.raises(ValidationError) as excinfo:
        await provisioning.request_server("", "pong", "mars", 4)

    assert set(excinfo.value.fields) == {"user_id", "game", "region", "tier"}
    assert processor.calls == []
    with session_factory() as db:
        assert db.execute(select(func.count()).select_from(Server)).scalar_one() == 0


@pytest.mark.asyncio
async def test_validation_reports_only_offending_fields(provisioning):
    with pytest.raises(ValidationError) as excinfo:
        await provisioning.request_server("user-1", "minecraft", "fra", 0)

    assert list(excinfo.value.fields) == ["tier"]


@pytest.mark.asyncio
async def test_validation_checks_types_alongside_domains(provisioning, processor):
    with pytest.raises(ValidationError) as excinfo:
        await provisioning.request_server(None, ["minecraft"], "fra", "2")

    assert set(excinfo.value.fields) == {"user_id", "game", "tier"}
    assert processor.calls == []


@pytest.mark.asyncio
async def test_processor_failure_leaves_records_in_initial_state(store, config, session_factory):
    service = ProvisioningService(store, FakeProcessor(fail=True), config)

    with pytest.raises(UpstreamPaymentError):
        await service.request_server("user-7", "terraria", "nyc", 1)

    with session_factory() as db:
        server = db.execute(select(Server)).scalar_one()
    assert server.status == "installing"
    payment = store.get_payment_for_server(server.server_id)
    assert payment.status == "requires_payment_method"
    assert payment.payment_intent_ref is None


@pytest.mark.asyncio
async def test_processor_timeout_is_upstream_error(store, config):
    config.processor_timeout_seconds = 0.05
    slow = FakeProcessor(delay=1.0)
    service = ProvisioningService(store, slow, config)

    with pytest.raises(UpstreamPaymentError):
        await service.request_server("user-8", "factorio", "sgp", 3)

    assert len(slow.calls) == 1
