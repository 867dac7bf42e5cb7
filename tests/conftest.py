"""Shared fixtures: file-backed SQLite ledger, fake processor, signed webhooks."""

import asyncio
import hashlib
import hmac
import json
import os
import time
from uuid import uuid4

# Module-level settings are read on import; give them something to read.
os.environ.setdefault("POSTGRES_DSN", "sqlite+pysqlite://")
os.environ.setdefault("STRIPE_API_KEY", "sk_test_dummy")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_secret")
os.environ.setdefault("OTEL_ENABLED", "false")

import pytest

from gamecloud.common.config import CommonSettings
from gamecloud.common.db import Base, make_engine, make_session_factory
from gamecloud.common.errors import UpstreamPaymentError
from gamecloud.services.fanout.service import StatusFanout
from gamecloud.services.ledger.store import LedgerStore
from gamecloud.services.provisioning.processor import PaymentIntent
from gamecloud.services.provisioning.service import ProvisioningService
from gamecloud.services.reconciler.service import WebhookReconciler

WEBHOOK_SECRET = "whsec_unit_test_secret"


class FakeProcessor:
    """In-memory stand-in for the payment processor."""

    def __init__(self, fail: bool = False, delay: float = 0.0) -> None:
        self.fail = fail
        self.delay = delay
        self.calls: list[dict] = []

    async def create_payment_intent(self, amount_cents, currency, metadata):
        self.calls.append({"amount_cents": amount_cents, "currency": currency, "metadata": dict(metadata)})
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise UpstreamPaymentError("card processor rejected the request")
        ref = f"pi_{uuid4().hex[:16]}"
        return PaymentIntent(reference=ref, client_token=f"{ref}_secret_{uuid4().hex[:8]}")


class RecordingConnection:
    """Live-connection double that records every message it receives."""

    def __init__(self, broken: bool = False) -> None:
        self.broken = broken
        self.sent: list[dict] = []
        self.attempts = 0

    async def send_json(self, data) -> None:
        self.attempts += 1
        if self.broken:
            raise RuntimeError("connection closed")
        self.sent.append(data)


@pytest.fixture
def config():
    return CommonSettings(
        postgres_dsn="sqlite+pysqlite://",
        stripe_api_key="sk_test_dummy",
        stripe_webhook_secret=WEBHOOK_SECRET,
        otel_enabled=False,
        processor_timeout_seconds=1.0,
    )


@pytest.fixture
def engine(tmp_path):
    engine = make_engine(f"sqlite+pysqlite:///{tmp_path / 'ledger.db'}")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def store(session_factory):
    return LedgerStore(session_factory)


@pytest.fixture
def processor():
    return FakeProcessor()


@pytest.fixture
def fanout(store):
    return StatusFanout(store, send_timeout_seconds=0.5)


@pytest.fixture
def provisioning(store, processor, config):
    return ProvisioningService(store, processor, config)


@pytest.fixture
def reconciler(store, fanout, config):
    return WebhookReconciler(store, fanout, config)


def sign_payload(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    """Stripe `v1` signature header for `payload`."""

    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.".encode("utf-8") + payload
    digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


@pytest.fixture
def make_event():
    """Factory for signed `(body, signature)` webhook deliveries."""

    def _make(event_type: str, intent_ref: str, server_id: str | None, event_id: str | None = None):
        metadata = {"server_id": server_id} if server_id is not None else {}
        body = json.dumps(
            {
                "id": event_id or f"evt_{uuid4().hex[:16]}",
                "object": "event",
                "type": event_type,
                "data": {"object": {"id": intent_ref, "object": "payment_intent", "metadata": metadata}},
            }
        ).encode("utf-8")
        return body, sign_payload(body)

    return _make
