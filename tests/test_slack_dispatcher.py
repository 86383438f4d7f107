from datetime import datetime, timedelta, timezone

import httpx
import pytest

from escalation.domain import EscalationNotice
from escalation.infrastructure import CircuitBreaker, SlackEscalationDispatcher
from escalation.infrastructure.external import CircuitState

T0 = datetime(2024, 6, 1, 14, 0, tzinfo=timezone.utc)
NOTICE = EscalationNotice(incident_id="INC-1", deadline_at=T0, occurred_at=T0 + timedelta(seconds=90))
WEBHOOK = "https://hooks.slack.test/services/T000/B000/XXX"


def make_dispatcher(handler, **kwargs) -> SlackEscalationDispatcher:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    options = {
        "webhook_url": WEBHOOK,
        "channel": "#escalations",
        "incident_base_url": "https://incidents.test/incidents/",
        "retry_base_delay": 0,
        "http_client": client,
    }
    options.update(kwargs)
    return SlackEscalationDispatcher(**options)


def test_message_links_incident():
    dispatcher = SlackEscalationDispatcher(
        webhook_url=WEBHOOK,
        channel="#escalations",
        incident_base_url="https://incidents.test/incidents/"
    )
    message = dispatcher.build_message(NOTICE)

    assert message["channel"] == "#escalations"
    assert message["text"] == "Incident INC-1 escalated"
    fields = [f["text"] for f in message["blocks"][1]["fields"]]
    assert "<https://incidents.test/incidents/INC-1|INC-1>" in fields[0]
    assert fields[3].endswith("90s")


@pytest.mark.asyncio
async def test_dispatch_posts_to_webhook():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, text="ok")

    dispatcher = make_dispatcher(handler)
    assert await dispatcher.dispatch(NOTICE) is True
    assert len(requests) == 1
    assert str(requests[0].url) == WEBHOOK
    await dispatcher.close()


@pytest.mark.asyncio
async def test_dispatch_retries_then_gives_up():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(500)

    dispatcher = make_dispatcher(handler, max_retries=3)
    assert await dispatcher.dispatch(NOTICE) is False
    assert len(calls) == 3
    await dispatcher.close()


@pytest.mark.asyncio
async def test_dispatch_survives_transport_errors():
    attempts = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(request)
        if len(attempts) == 1:
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(200)

    dispatcher = make_dispatcher(handler)
    assert await dispatcher.dispatch(NOTICE) is True
    assert len(attempts) == 2
    await dispatcher.close()


@pytest.mark.asyncio
async def test_dispatch_without_webhook_is_skipped():
    dispatcher = SlackEscalationDispatcher(webhook_url=None, channel="#escalations")
    assert await dispatcher.dispatch(NOTICE) is False


@pytest.mark.asyncio
async def test_open_circuit_skips_delivery():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(503)

    dispatcher = make_dispatcher(handler, max_retries=1)
    for _ in range(dispatcher.circuit_breaker.failure_threshold):
        await dispatcher.dispatch(NOTICE)
    assert dispatcher.circuit_breaker.state == CircuitState.OPEN

    calls.clear()
    assert await dispatcher.dispatch(NOTICE) is False
    assert calls == []
    await dispatcher.close()


def test_circuit_breaker_half_opens_after_timeout():
    now = [0.0]
    breaker = CircuitBreaker(failure_threshold=2, recovery_timeout=30, clock=lambda: now[0])

    breaker.record_failure()
    assert breaker.allow_request()
    breaker.record_failure()
    assert not breaker.allow_request()

    now[0] = 31
    assert breaker.state == CircuitState.HALF_OPEN
    breaker.record_success()
    assert breaker.state == CircuitState.CLOSED
