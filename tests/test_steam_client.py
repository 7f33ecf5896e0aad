"""
Tests for the Steam API client: catalog filtering, detail outcomes, retries,
throttling and caching
"""
import pytest
import requests
from unittest.mock import MagicMock

from allsales.exceptions import UpstreamError
from allsales.steam_client import (
    CatalogItem,
    DetailStatus,
    RequestThrottle,
    RetryPolicy,
    SteamClient,
    call_with_retry,
)


class FakeClock:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now


def make_response(status_code=200, payload=None):
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = payload
    return response


def make_client(responses, sleeps=None, clock=None, **kwargs):
    session = MagicMock()
    session.get.side_effect = responses
    options = {"request_delay_ms": 0, "retry_delay_ms": 2000, "max_retries": 3}
    options.update(kwargs)
    client = SteamClient(
        "key",
        session=session,
        sleep=(sleeps.append if sleeps is not None else lambda seconds: None),
        clock=clock or FakeClock(),
        **options,
    )
    return client, session


def detail_payload(external_id, data=None, success=True):
    entry = {"success": success}
    if data is not None:
        entry["data"] = data
    return {str(external_id): entry}


class TestFetchCatalog:
    """App list retrieval"""

    def test_drops_unnamed_and_test_entries(self):
        apps = [
            {"appid": 1, "name": "Test Game"},
            {"appid": 2, "name": "Real Game"},
            {"appid": 3, "name": "   "},
            {"appid": 4},
            {"appid": 5, "name": "Contest of Champions"},
        ]
        client, session = make_client([make_response(payload={"applist": {"apps": apps}})])

        items = client.fetch_catalog()

        assert items == [CatalogItem(external_id=2, display_name="Real Game")]
        assert session.get.call_args.kwargs["params"] == {"key": "key"}
        assert session.get.call_args.kwargs["timeout"] == 10

    def test_malformed_payload_raises(self):
        client, _ = make_client([make_response(payload={"unexpected": []})])

        with pytest.raises(UpstreamError):
            client.fetch_catalog()

    def test_failure_after_retries_raises(self):
        sleeps = []
        client, session = make_client([make_response(503)] * 4, sleeps=sleeps)

        with pytest.raises(UpstreamError) as exc_info:
            client.fetch_catalog()

        assert session.get.call_count == 4
        assert exc_info.value.http_status == 503

    def test_network_error_is_wrapped(self):
        client, _ = make_client([requests.ConnectionError("refused")] * 4)

        with pytest.raises(UpstreamError):
            client.fetch_catalog()

    def test_served_from_cache(self, fake_redis):
        apps = [{"appid": 2, "name": "Real Game"}]
        client, session = make_client([make_response(payload={"applist": {"apps": apps}})])

        first = client.fetch_catalog()
        second = client.fetch_catalog()

        assert first == second
        assert session.get.call_count == 1
        assert fake_redis.ttls["steam:catalog"] == 3600


class TestFetchDetail:
    """appdetails outcomes"""

    def test_found(self):
        data = {"name": "Real Game", "type": "game"}
        client, session = make_client([make_response(payload=detail_payload(2, data))])

        result = client.fetch_detail(2, "Real Game")

        assert result.status is DetailStatus.FOUND
        assert result.payload == data
        assert session.get.call_args.kwargs["params"] == {"appids": "2", "cc": "us"}

    def test_success_false_is_not_found(self):
        client, _ = make_client([make_response(payload=detail_payload(7, success=False))])

        result = client.fetch_detail(7)

        assert result.status is DetailStatus.NOT_FOUND
        assert result.reason == "No data available"

    def test_missing_id_key_is_malformed(self):
        client, _ = make_client([make_response(payload={"999": {"success": True, "data": {}}})])

        result = client.fetch_detail(7)

        assert result.status is DetailStatus.NOT_FOUND
        assert result.reason == "Malformed payload"

    def test_non_object_data_is_malformed(self):
        client, _ = make_client([make_response(payload={"7": {"success": True, "data": []}})])

        assert client.fetch_detail(7).reason == "Malformed payload"

    def test_not_found_is_not_cached(self, fake_redis):
        client, session = make_client([make_response(payload=detail_payload(7, success=False))] * 2)

        client.fetch_detail(7)
        client.fetch_detail(7)

        assert session.get.call_count == 2
        assert fake_redis.store == {}

    def test_found_is_cached(self, fake_redis):
        data = {"name": "Real Game"}
        client, session = make_client([make_response(payload=detail_payload(2, data))])

        client.fetch_detail(2)
        cached = client.fetch_detail(2)

        assert cached.status is DetailStatus.FOUND
        assert cached.payload == data
        assert session.get.call_count == 1
        assert fake_redis.ttls["steam:detail:2"] == 1800

    def test_clear_cache(self, fake_redis):
        data = {"name": "Real Game"}
        client, session = make_client([make_response(payload=detail_payload(2, data))] * 2)

        client.fetch_detail(2)
        client.clear_cache()
        client.fetch_detail(2)

        assert session.get.call_count == 2


class TestRetries:
    """Backoff on transient failures, none on permanent ones"""

    def test_retries_server_errors_with_exponential_backoff(self):
        sleeps = []
        responses = [make_response(500), make_response(502), make_response(payload=detail_payload(2, {"name": "X"}))]
        client, session = make_client(responses, sleeps=sleeps)

        result = client.fetch_detail(2)

        assert result.status is DetailStatus.FOUND
        assert session.get.call_count == 3
        assert sleeps == [2.0, 4.0]

    def test_gives_up_after_max_retries(self):
        sleeps = []
        client, session = make_client([make_response(503)] * 4, sleeps=sleeps)

        result = client.fetch_detail(2)

        assert result.status is DetailStatus.FAILED
        assert session.get.call_count == 4
        assert sleeps == [2.0, 4.0, 8.0]

    @pytest.mark.parametrize("status", [403, 404])
    def test_client_errors_are_not_retried(self, status):
        sleeps = []
        client, session = make_client([make_response(status)], sleeps=sleeps)

        result = client.fetch_detail(2)

        assert result.status is DetailStatus.FAILED
        assert result.error.http_status == status
        assert session.get.call_count == 1
        assert sleeps == []

    def test_timeout_is_retried(self):
        responses = [requests.Timeout("slow"), make_response(payload=detail_payload(2, {"name": "X"}))]
        client, session = make_client(responses)

        assert client.fetch_detail(2).status is DetailStatus.FOUND
        assert session.get.call_count == 2

    def test_invalid_json_is_not_retried(self):
        response = make_response(200)
        response.json.side_effect = ValueError("Expecting value")
        client, session = make_client([response])

        assert client.fetch_detail(2).status is DetailStatus.FAILED
        assert session.get.call_count == 1

    def test_rate_limit_widens_spacing(self):
        sleeps = []
        responses = [make_response(429), make_response(payload=detail_payload(2, {"name": "X"}))]
        client, _ = make_client(responses, sleeps=sleeps, request_delay_ms=1000)

        result = client.fetch_detail(2)

        assert result.status is DetailStatus.FOUND
        assert client.throttle.rate_limit_streak == 1
        assert client.throttle_state()["request_delay_seconds"] == 2.0
        # retry backoff, then the doubled request spacing
        assert sleeps == [2.0, 2.0]

    def test_call_with_retry_reraises_last_error(self):
        calls = []

        def operation():
            calls.append(1)
            raise UpstreamError("boom", http_status=500)

        with pytest.raises(UpstreamError):
            call_with_retry(operation, RetryPolicy(max_retries=2, base_delay=0.1, sleep=lambda s: None))

        assert len(calls) == 3


class TestRequestThrottle:
    """Shared request spacing"""

    def test_spacing_between_requests(self):
        clock, sleeps = FakeClock(), []
        throttle = RequestThrottle(1.0, 30.0, clock=clock, sleep=sleeps.append)

        with throttle.slot():
            pass
        clock.now = 0.4
        with throttle.slot():
            pass

        assert sleeps == [pytest.approx(0.6)]

    def test_delay_doubles_and_caps(self):
        throttle = RequestThrottle(1.0, 30.0, clock=FakeClock(), sleep=lambda s: None)

        for _ in range(3):
            throttle.record_rate_limited()
        assert throttle.current_delay == 8.0

        for _ in range(3):
            throttle.record_rate_limited()
        assert throttle.current_delay == 30.0

    def test_streak_decays_only_after_quiet_minute(self):
        clock = FakeClock()
        throttle = RequestThrottle(1.0, 30.0, clock=clock, sleep=lambda s: None)
        throttle.record_rate_limited()
        throttle.record_rate_limited()

        clock.now = 30
        throttle.record_success()
        assert throttle.rate_limit_streak == 2

        clock.now = 61
        throttle.record_success()
        assert throttle.rate_limit_streak == 1
        assert throttle.current_delay == 2.0

    def test_cooldown_after_five_rate_limits(self):
        clock, sleeps = FakeClock(), []
        throttle = RequestThrottle(1.0, 30.0, clock=clock, sleep=sleeps.append)
        for _ in range(5):
            throttle.record_rate_limited()

        assert throttle.state()["cooldown_pending"] is True
        with throttle.slot():
            pass

        assert sleeps == [300]
        assert throttle.state()["cooldown_pending"] is False
