import asyncio

import pytest

from livescan.clients.api_football import ApiFootballClient, chunked
from livescan.core.error_handling import APIError, ConfigurationError
from tests.factories import FakeSession, envelope, make_fixture, make_settings, provider_routes


def _client(session, **settings):
    client = ApiFootballClient(make_settings(**settings), session=session)
    client.sleeps = []

    async def record_sleep(seconds):
        client.sleeps.append(seconds)

    client._sleep = record_sleep
    return client


def test_chunked_dedupes_and_keeps_order():
    assert chunked([3, 1, 3, 2, 1, 4], 2) == [[3, 1], [2, 4]]
    assert chunked([], 5) == []


def test_live_fixtures_sends_key_header_and_unwraps_response():
    session = FakeSession(provider_routes([make_fixture(7)]))
    client = _client(session)

    fixtures = asyncio.run(client.live_fixtures())

    assert [f["fixture"]["id"] for f in fixtures] == [7]
    assert session.calls == [("fixtures", {"live": "all"})]
    assert client.http.headers["x-apisports-key"] == "test-key"


def test_missing_key_is_configuration_error_without_calls():
    session = FakeSession(provider_routes([]))
    client = _client(session, api_football_key=None)

    with pytest.raises(ConfigurationError):
        asyncio.run(client.live_fixtures())
    assert session.calls == []


def test_provider_errors_field_raises_api_error():
    session = FakeSession({"fixtures": lambda params: envelope([], errors={"requests": "limit reached"})})
    client = _client(session)

    with pytest.raises(APIError):
        asyncio.run(client.live_fixtures())


def test_batch_splits_into_chunks_with_delay():
    stats = {i: [{"team": {"id": i}}] for i in range(1, 8)}
    session = FakeSession(provider_routes([], statistics=stats))
    client = _client(session, stats_batch_size=3, stats_batch_delay_ms=30)

    result = asyncio.run(client.statistics_batch(range(1, 8)))

    assert set(result.payloads) == set(range(1, 8))
    assert result.get(5) == [{"team": {"id": 5}}]
    assert session.count("fixtures/statistics") == 7
    # 3 chunks -> 2 pauses between them
    assert client.sleeps == [0.03, 0.03]
    assert not result.failed


def test_failed_request_degrades_to_empty_entry():
    odds = {1: [{"odds": []}], 2: 500, 3: 404}
    session = FakeSession(provider_routes([], live_odds=odds))
    client = _client(session)

    result = asyncio.run(client.live_odds_batch([1, 2, 3]))

    assert result.get(1) == [{"odds": []}]
    assert result.get(2) == []
    assert result.get(3) == []
    assert result.failed == {2, 3}


def test_batch_aborts_on_configuration_error():
    session = FakeSession(provider_routes([]))
    client = _client(session, api_football_key="")

    with pytest.raises(ConfigurationError):
        asyncio.run(client.events_batch([1, 2]))


def test_cycle_counter_counts_every_request_since_reset():
    session = FakeSession(provider_routes([make_fixture()]))
    client = _client(session)

    async def run():
        await client.live_fixtures()
        client.reset_cycle()
        await client.prematch_odds_batch([1, 2])
        return client.calls_this_cycle

    assert asyncio.run(run()) == 2
