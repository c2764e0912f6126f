"""Tests for Sentry scrubbing and metrics helpers."""

from prometheus_client import REGISTRY

from hookline.routes.metrics import track_webhook_attempt, track_webhook_terminal
from hookline.sentry_config import scrub_secrets


def test_scrubs_signature_and_api_key_headers() -> None:
    event = {
        "request": {
            "headers": {
                "X-Webhook-Signature": "abc123",
                "x-api-key": "sk_live_secret",
                "Content-Type": "application/json",
            }
        }
    }

    headers = scrub_secrets(event, None)["request"]["headers"]

    assert headers["X-Webhook-Signature"] == "[Filtered]"
    assert headers["x-api-key"] == "[Filtered]"
    assert headers["Content-Type"] == "application/json"


def test_scrub_without_request() -> None:
    event = {"exception": {}}
    assert scrub_secrets(event, None) is event


def test_attempt_metrics() -> None:
    labels = {"event_type": "ORDER_SHIPPED", "outcome": "delivered"}
    before = REGISTRY.get_sample_value("webhook_attempts_total", labels) or 0

    track_webhook_attempt("ORDER_SHIPPED", "delivered", 0.12)
    track_webhook_terminal("ORDER_SHIPPED", "DELIVERED")

    assert REGISTRY.get_sample_value("webhook_attempts_total", labels) == before + 1
    assert REGISTRY.get_sample_value(
        "webhooks_terminal_total", {"event_type": "ORDER_SHIPPED", "status": "DELIVERED"}
    ) >= 1
