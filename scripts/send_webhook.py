"""Sign and POST a payment-intent webhook to a running instance.

Useful for manual duplicate, out-of-order and conflicting delivery testing.
"""

import argparse
import hashlib
import hmac
import json
import time
from uuid import uuid4

import httpx


def sign(payload: str, secret: str, timestamp: int | None = None) -> str:
    """Build a `Stripe-Signature` header value for `payload`."""

    timestamp = int(time.time()) if timestamp is None else timestamp
    mac = hmac.new(secret.encode("utf-8"), f"{timestamp}.{payload}".encode("utf-8"), hashlib.sha256)
    return f"t={timestamp},v1={mac.hexdigest()}"


def build_event(event_type: str, intent_ref: str, server_id: str, event_id: str | None = None) -> dict:
    return {
        "id": event_id or f"evt_{uuid4().hex}",
        "type": event_type,
        "data": {"object": {"id": intent_ref, "object": "payment_intent", "metadata": {"server_id": server_id}}},
    }


def main() -> None:
    """Parse CLI args and deliver one (or several identical) events."""

    parser = argparse.ArgumentParser(description="Send a signed payment-intent webhook.")
    parser.add_argument("--url", default="http://localhost:8000/webhooks/stripe")
    parser.add_argument("--secret", required=True)
    parser.add_argument("--type", dest="event_type", default="payment_intent.succeeded")
    parser.add_argument("--intent", required=True, help="payment intent reference (pi_...)")
    parser.add_argument("--server-id", required=True)
    parser.add_argument("--event-id", default=None)
    parser.add_argument("--repeat", type=int, default=1, help="deliver the identical event N times")
    args = parser.parse_args()

    body = json.dumps(build_event(args.event_type, args.intent, args.server_id, args.event_id))
    for _ in range(args.repeat):
        resp = httpx.post(
            args.url,
            content=body,
            headers={"content-type": "application/json", "stripe-signature": sign(body, args.secret)},
            timeout=10.0,
        )
        print(resp.status_code, resp.text)


if __name__ == "__main__":
    main()
