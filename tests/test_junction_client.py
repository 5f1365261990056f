import json

import httpx
import pytest

from app.infrastructure.resilience import CircuitOpenError, CircuitState
from app.junction.client import (
    JunctionClient,
    UpstreamClientError,
    UpstreamSearchError,
    UpstreamServerError,
    parse_search_id,
)
from app.types import TransportMode


class Recorder:
    """Scripted MockTransport handler: pops one response per request."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        nxt = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(nxt, Exception):
            raise nxt
        return nxt


def make_client(handler, **kwargs):
    sleeps = []

    async def fake_sleep(seconds):
        sleeps.append(seconds)

    client = JunctionClient(
        api_key="jk_test_123456",
        base_url="https://offers.test",
        transport=httpx.MockTransport(handler),
        sleep=fake_sleep,
        **kwargs,
    )
    return client, sleeps


def accepted(mode="train", search_id="train_search_ab12CD"):
    return httpx.Response(202, headers={"Location": f"/{mode}-searches/{search_id}/offers"})


def test_parse_search_id():
    assert parse_search_id(TransportMode.FLIGHT, "/flight-searches/flight_search_Xy9/offers") == "flight_search_Xy9"
    assert parse_search_id(TransportMode.TRAIN, "/flight-searches/flight_search_Xy9/offers") is None
    assert parse_search_id("train", "https://h/train-searches/train_search_1") == "train_search_1"


async def test_initiate_search_sends_expected_body_and_headers():
    handler = Recorder(accepted())
    client, _ = make_client(handler)

    search_id = await client.initiate_search(
        TransportMode.TRAIN, "plc_a", "plc_b", "2025-06-01T10:00:00Z", "1995-01-01"
    )
    await client.aclose()

    assert search_id == "train_search_ab12CD"
    [req] = handler.requests
    assert req.method == "POST"
    assert req.url.path == "/train-searches"
    assert req.headers["x-api-key"] == "jk_test_123456"
    body = json.loads(req.content)
    assert body == {
        "originId": "plc_a",
        "destinationId": "plc_b",
        "departureAfter": "2025-06-01T10:00:00Z",
        "returnDepartureAfter": None,
        "passengerAges": [{"dateOfBirth": "1995-01-01"}],
    }


@pytest.mark.parametrize("response", [
    httpx.Response(400, text="bad request"),
    httpx.Response(200, json={}),
    httpx.Response(202),
    httpx.Response(202, headers={"Location": "/train-searches/weird"}),
])
async def test_initiate_search_rejects_unusable_responses(response):
    client, _ = make_client(Recorder(response))
    with pytest.raises(UpstreamSearchError):
        await client.initiate_search(TransportMode.TRAIN, "a", "b", "2025-06-01T10:00:00Z", "1995-01-01")
    await client.aclose()


async def test_initiate_search_retries_transport_errors_once():
    handler = Recorder(httpx.ConnectError("refused"), accepted("flight", "flight_search_1"))
    client, sleeps = make_client(handler)

    search_id = await client.initiate_search(TransportMode.FLIGHT, "a", "b", "x", "y")
    await client.aclose()

    assert search_id == "flight_search_1"
    assert len(handler.requests) == 2
    assert sleeps == [1.0]


async def test_breaker_opens_after_repeated_failures():
    client, _ = make_client(Recorder(httpx.Response(500, text="down")))
    for _ in range(5):
        with pytest.raises(UpstreamSearchError):
            await client.initiate_search(TransportMode.TRAIN, "a", "b", "x", "y")
    with pytest.raises(CircuitOpenError):
        await client.initiate_search(TransportMode.TRAIN, "a", "b", "x", "y")
    # the other mode has its own breaker
    with pytest.raises(UpstreamSearchError):
        await client.initiate_search(TransportMode.FLIGHT, "a", "b", "x", "y")
    await client.aclose()


async def test_rejected_requests_do_not_open_breaker():
    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        if body["originId"] == "plc_bad":
            return httpx.Response(400, text="unknown place")
        return accepted()

    client, _ = make_client(handler)
    for _ in range(6):
        with pytest.raises(UpstreamClientError):
            await client.initiate_search(TransportMode.TRAIN, "plc_bad", "b", "x", "y")

    assert client.breakers[TransportMode.TRAIN].state == CircuitState.CLOSED
    search_id = await client.initiate_search(TransportMode.TRAIN, "plc_ok", "plc_ok2", "x", "y")
    assert search_id == "train_search_ab12CD"
    await client.aclose()


async def test_server_errors_are_typed():
    client, _ = make_client(Recorder(httpx.Response(503, text="busy")))
    with pytest.raises(UpstreamServerError):
        await client.initiate_search(TransportMode.FLIGHT, "a", "b", "x", "y")
    assert client.breakers[TransportMode.FLIGHT].failure_count == 1
    await client.aclose()


async def test_poll_returns_first_non_empty_items():
    offers = [{"id": "off_1"}, {"id": "off_2"}]
    handler = Recorder(
        httpx.Response(200, json={"items": []}),
        httpx.Response(200, content=b""),
        httpx.Response(200, json={"items": offers}),
    )
    client, sleeps = make_client(handler, poll_interval=2.0)

    result = await client.poll_offers(TransportMode.TRAIN, "train_search_1")
    await client.aclose()

    assert result == offers
    assert len(handler.requests) == 3
    assert handler.requests[0].url.path == "/train-searches/train_search_1/offers"
    assert sleeps == [2.0, 2.0]


async def test_poll_recovers_from_intermittent_errors():
    handler = Recorder(
        httpx.Response(503, text="busy"),
        httpx.Response(200, text="{not json"),
        httpx.Response(200, json={"items": [{"id": "off_1"}]}),
    )
    client, _ = make_client(handler, max_poll_attempts=5)
    assert await client.poll_offers(TransportMode.FLIGHT, "flight_search_1") == [{"id": "off_1"}]
    await client.aclose()


async def test_poll_raises_when_final_attempt_fails():
    handler = Recorder(httpx.Response(500, text="down"))
    client, _ = make_client(handler, max_poll_attempts=3)
    with pytest.raises(UpstreamSearchError):
        await client.poll_offers(TransportMode.FLIGHT, "flight_search_1")
    assert len(handler.requests) == 3
    await client.aclose()


async def test_poll_gives_up_quietly_when_no_offers_appear():
    handler = Recorder(httpx.Response(204))
    client, sleeps = make_client(handler, max_poll_attempts=4, poll_interval=0.5)
    assert await client.poll_offers(TransportMode.TRAIN, "train_search_1") == []
    assert len(handler.requests) == 4
    assert sleeps == [0.5, 0.5, 0.5]
    await client.aclose()


async def test_search_places_merges_and_tags_types():
    def handler(request: httpx.Request) -> httpx.Response:
        kind = request.url.params["filter[type][eq]"]
        assert request.url.params["filter[name][like]"] == "Paris"
        if kind == "railway-station":
            return httpx.Response(200, json={"data": [{"id": "s1", "name": "Paris Nord"}]})
        return httpx.Response(200, json={"data": [{"id": "a1", "name": "Orly, Paris"}]})

    client, _ = make_client(handler)
    places = await client.search_places("Paris")
    await client.aclose()

    assert [(p["id"], p["type"]) for p in places] == [("s1", "railway-station"), ("a1", "airport")]


async def test_search_places_tolerates_failures():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.params["filter[type][eq]"] == "airport":
            return httpx.Response(500)
        return httpx.Response(200, json={"data": [{"id": "s1", "name": "Lyon"}]})

    client, _ = make_client(handler)
    assert [p["id"] for p in await client.search_places("Lyon")] == ["s1"]
    assert await client.search_places("   ") == []
    await client.aclose()

    broken, _ = make_client(Recorder(httpx.ConnectError("offline")))
    assert await broken.search_places("Lyon") == []
    await broken.aclose()
