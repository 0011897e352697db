import json

import httpx
import pytest

from app.services.notifications.push_gateway import (
    PushDeliveryStatus,
    PushGateway,
    PushMessage,
)

API_URL = "https://push.test/--/api/v2/push/send"


def _messages(count):
    return [
        PushMessage(to=f"ExponentPushToken[{i}]", title="t", body="b") for i in range(count)
    ]


def _ok_tickets(request):
    payload = json.loads(request.content)
    return httpx.Response(
        200, json={"data": [{"status": "ok", "id": f"id-{i}"} for i, _ in enumerate(payload)]}
    )


class Recorder:
    """Collects requests and answers them from a list of responders."""

    def __init__(self, *responders):
        self.responders = list(responders)
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        responder = self.responders.pop(0) if len(self.responders) > 1 else self.responders[0]
        return responder(request)


def _gateway(recorder, sleeps=None, **kwargs):
    async def fake_sleep(seconds):
        if sleeps is not None:
            sleeps.append(seconds)

    client = httpx.AsyncClient(transport=httpx.MockTransport(recorder))
    return PushGateway(
        client=client,
        api_url=API_URL,
        access_token=kwargs.pop("access_token", ""),
        max_attempts=3,
        backoff_base_seconds=1.0,
        sleep=fake_sleep,
        **kwargs,
    )


class TestBatching:
    @pytest.mark.asyncio
    async def test_splits_into_provider_sized_batches(self):
        recorder = Recorder(_ok_tickets)
        results = await _gateway(recorder).send(_messages(250))

        sizes = [len(json.loads(r.content)) for r in recorder.requests]
        assert sizes == [100, 100, 50]
        assert len(results) == 250
        assert all(r.delivered for r in results)
        assert results[0].token == "ExponentPushToken[0]"
        assert results[249].token == "ExponentPushToken[249]"

    @pytest.mark.asyncio
    async def test_empty_input_makes_no_calls(self):
        recorder = Recorder(_ok_tickets)
        assert await _gateway(recorder).send([]) == []
        assert recorder.requests == []

    @pytest.mark.asyncio
    async def test_payload_and_auth_header(self):
        recorder = Recorder(_ok_tickets)
        message = PushMessage(
            to="ExponentPushToken[x]",
            title="Hello",
            body="World",
            data={"screen": "event"},
            channel_id="event-reminders",
        )
        await _gateway(recorder, access_token="secret").send([message])

        request = recorder.requests[0]
        assert request.headers["Authorization"] == "Bearer secret"
        assert json.loads(request.content) == [
            {
                "to": "ExponentPushToken[x]",
                "title": "Hello",
                "body": "World",
                "data": {"screen": "event"},
                "priority": "high",
                "sound": "default",
                "channelId": "event-reminders",
            }
        ]

    @pytest.mark.asyncio
    async def test_no_auth_header_without_token(self):
        recorder = Recorder(_ok_tickets)
        await _gateway(recorder).send(_messages(1))
        assert "Authorization" not in recorder.requests[0].headers


class TestRetries:
    @pytest.mark.asyncio
    async def test_backs_off_on_unavailable_provider(self):
        unavailable = lambda request: httpx.Response(503)
        recorder = Recorder(unavailable, unavailable, _ok_tickets)
        sleeps = []

        results = await _gateway(recorder, sleeps).send(_messages(2))

        assert sleeps == [1.0, 2.0]
        assert len(recorder.requests) == 3
        assert all(r.delivered for r in results)

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self):
        recorder = Recorder(lambda request: httpx.Response(502))
        sleeps = []

        results = await _gateway(recorder, sleeps).send(_messages(2))

        assert len(recorder.requests) == 3
        assert sleeps == [1.0, 2.0]
        assert all(r.status == PushDeliveryStatus.TRANSIENT_FAILURE for r in results)
        assert "502" in results[0].error

    @pytest.mark.asyncio
    async def test_timeout_is_retried(self):
        def timeout(request):
            raise httpx.ReadTimeout("timed out", request=request)

        recorder = Recorder(timeout, _ok_tickets)
        results = await _gateway(recorder, []).send(_messages(1))
        assert results[0].delivered

    @pytest.mark.asyncio
    async def test_only_retryable_messages_are_resent(self):
        def first(request):
            return httpx.Response(
                200,
                json={
                    "data": [
                        {"status": "ok", "id": "a"},
                        {
                            "status": "error",
                            "message": "not registered",
                            "details": {"error": "DeviceNotRegistered"},
                        },
                        {
                            "status": "error",
                            "message": "slow down",
                            "details": {"error": "MessageRateExceeded"},
                        },
                    ]
                },
            )

        recorder = Recorder(first, _ok_tickets)
        results = await _gateway(recorder, []).send(_messages(3))

        assert len(recorder.requests) == 2
        assert [m["to"] for m in json.loads(recorder.requests[1].content)] == [
            "ExponentPushToken[2]"
        ]
        assert results[0].delivered
        assert results[1].status == PushDeliveryStatus.PERMANENT_FAILURE
        assert results[1].should_deactivate_token
        assert results[2].delivered


class TestHardFailures:
    @pytest.mark.asyncio
    async def test_client_error_is_not_retried(self):
        recorder = Recorder(lambda request: httpx.Response(400, json={"errors": []}))
        results = await _gateway(recorder, []).send(_messages(2))

        assert len(recorder.requests) == 1
        assert all(r.status == PushDeliveryStatus.TRANSIENT_FAILURE for r in results)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "response",
        [
            httpx.Response(200, text="<html>oops</html>"),
            httpx.Response(200, json={"data": [{"status": "ok"}]}),
            httpx.Response(200, json={"data": "nope"}),
            httpx.Response(200, json={"data": [{"status": "maybe"}, {"status": "ok"}]}),
        ],
    )
    async def test_malformed_response_fails_without_retry(self, response):
        recorder = Recorder(lambda request: response)
        results = await _gateway(recorder, []).send(_messages(2))

        assert len(recorder.requests) == 1
        assert [r.delivered for r in results] == [False, False]
        assert results[0].error.startswith("Push provider")


class TestTickets:
    @pytest.mark.asyncio
    async def test_ok_ticket_without_id_is_not_delivered(self):
        recorder = Recorder(
            lambda request: httpx.Response(200, json={"data": [{"status": "ok"}]})
        )
        results = await _gateway(recorder, []).send(_messages(1))

        assert len(recorder.requests) == 1
        assert not results[0].delivered
        assert results[0].status == PushDeliveryStatus.TRANSIENT_FAILURE
        assert results[0].message_id is None
        assert results[0].error.startswith("Push provider")

    @pytest.mark.asyncio
    async def test_push_notification_id_is_accepted(self):
        recorder = Recorder(
            lambda request: httpx.Response(
                200, json={"data": [{"status": "ok", "pushNotificationId": "pn-7"}]}
            )
        )
        results = await _gateway(recorder, []).send(_messages(1))

        assert results[0].delivered
        assert results[0].message_id == "pn-7"
