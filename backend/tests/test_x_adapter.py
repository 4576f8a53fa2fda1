"""Unit tests for the XAdapter module."""

import pytest
from datetime import datetime, timezone
from unittest.mock import Mock, patch

import requests

from adapter.base import (
    MalformedPayloadError,
    SourceAPIError,
    SourceAuthenticationError,
    SourceRateLimitError,
)
from adapter.rate_limiter import RateLimiter, RateLimitConfig
from adapter.x import XAdapter


def create_mock_response(status_code=200, json_data=None, headers=None):
    """Helper to create mock response with proper headers."""
    mock_response = Mock()
    mock_response.status_code = status_code
    mock_response.json.return_value = json_data or {}
    mock_response.text = ""
    # Use a real dict for headers (not Mock) to avoid int() issues
    mock_response.headers = headers or {}
    return mock_response


SEARCH_RESPONSE = {
    "data": [
        {
            "id": "1001",
            "text": "Bitcoin ETF inflows hit a record",
            "created_at": "2024-01-15T10:30:00.000Z",
            "author_id": "42",
            "public_metrics": {"like_count": 120, "retweet_count": 30, "reply_count": 5, "impression_count": 9000},
        },
        {
            "id": "1002",
            "text": "Markets quiet this morning",
            "created_at": "2024-01-15T10:31:00.000Z",
            "author_id": "43",
        },
    ],
    "includes": {
        "users": [
            {
                "id": "42",
                "name": "Crypto Desk",
                "username": "cryptodesk",
                "verified": True,
                "profile_image_url": "https://example.com/a.png",
                "public_metrics": {"followers_count": 250000},
            }
        ]
    },
}


class TestXAdapterInit:
    """Test XAdapter initialization."""

    def test_init_with_bearer_token(self):
        adapter = XAdapter(bearer_token="test_token")

        assert adapter.bearer_token == "test_token"
        assert adapter.is_configured is True
        assert adapter.headers["Authorization"] == "Bearer test_token"
        assert adapter.name == "x_api"

    def test_init_without_token(self):
        with patch.dict("os.environ", {}, clear=True):
            adapter = XAdapter()

            assert adapter.bearer_token is None
            assert adapter.is_configured is False

    def test_init_with_env_token(self):
        with patch.dict("os.environ", {"X_BEARER_TOKEN": "env_token"}):
            adapter = XAdapter()

            assert adapter.is_configured is True

    def test_shared_rate_limiter(self):
        limiter = RateLimiter()
        adapter = XAdapter(bearer_token="test", rate_limiter=limiter)

        assert adapter.rate_limiter is limiter
        assert limiter.configs["x_search"].requests_per_window == 300
        assert limiter.configs["x_search"].window_seconds == 900


class TestXAdapterParsing:
    """Test tweet normalization."""

    def test_parse_tweet_with_author(self):
        adapter = XAdapter(bearer_token="test")
        users = {u["id"]: u for u in SEARCH_RESPONSE["includes"]["users"]}

        item = adapter._parse_tweet(SEARCH_RESPONSE["data"][0], users)

        assert item.id == "x_1001"
        assert item.source_kind == "x_api"
        assert item.author.handle == "cryptodesk"
        assert item.author.verified is True
        assert item.author.follower_count == 250000
        assert item.metrics.likes == 120
        assert item.metrics.reshares == 30
        assert item.metrics.views == 9000
        assert item.created_at == datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc)
        assert item.sentiment is None

    def test_parse_tweet_without_author(self):
        adapter = XAdapter(bearer_token="test")

        item = adapter._parse_tweet(SEARCH_RESPONSE["data"][1], {})

        assert item.author.handle == "unknown"
        assert item.author.follower_count == 0
        assert item.metrics.likes == 0


class TestXAdapterFetch:
    """Test search requests and error mapping."""

    @patch("adapter.x.requests.get")
    def test_fetch_items(self, mock_get):
        mock_get.return_value = create_mock_response(json_data=SEARCH_RESPONSE)
        adapter = XAdapter(bearer_token="test")

        items = adapter.fetch_items("bitcoin", max_items=20)

        assert [i.id for i in items] == ["x_1001", "x_1002"]
        params = mock_get.call_args.kwargs["params"]
        assert params["query"] == "bitcoin -is:retweet"
        assert params["max_results"] == 20
        assert params["expansions"] == "author_id"

    @patch("adapter.x.requests.get")
    def test_max_results_clamped(self, mock_get):
        mock_get.return_value = create_mock_response(json_data=SEARCH_RESPONSE)
        adapter = XAdapter(bearer_token="test")

        items = adapter.fetch_items("bitcoin -is:retweet", max_items=1)

        params = mock_get.call_args.kwargs["params"]
        assert params["max_results"] == 10
        assert params["query"] == "bitcoin -is:retweet"
        assert len(items) == 1

    @patch("adapter.x.requests.get")
    def test_empty_result(self, mock_get):
        mock_get.return_value = create_mock_response(json_data={"meta": {"result_count": 0}})
        adapter = XAdapter(bearer_token="test")

        assert adapter.fetch_items("nothing", max_items=10) == []

    def test_not_configured(self):
        with patch.dict("os.environ", {}, clear=True):
            adapter = XAdapter()

            with pytest.raises(SourceAuthenticationError):
                adapter.fetch_items("bitcoin", max_items=10)

    @patch("adapter.x.requests.get")
    def test_unauthorized(self, mock_get):
        mock_get.return_value = create_mock_response(status_code=401)
        adapter = XAdapter(bearer_token="bad")

        with pytest.raises(SourceAuthenticationError):
            adapter.fetch_items("bitcoin", max_items=10)

    @patch("adapter.x.requests.get")
    def test_rate_limited(self, mock_get):
        mock_get.return_value = create_mock_response(
            status_code=429,
            headers={"x-rate-limit-reset": "1705315800", "x-rate-limit-remaining": "0"}
        )
        adapter = XAdapter(bearer_token="test")

        with pytest.raises(SourceRateLimitError) as exc_info:
            adapter.fetch_items("bitcoin", max_items=10)

        assert exc_info.value.reset_time == 1705315800
        assert adapter.get_rate_limit_status()["remaining"] == 0

    @patch("adapter.x.requests.get")
    def test_server_error(self, mock_get):
        mock_get.return_value = create_mock_response(status_code=503)
        adapter = XAdapter(bearer_token="test")

        with pytest.raises(SourceAPIError) as exc_info:
            adapter.fetch_items("bitcoin", max_items=10)

        assert exc_info.value.status_code == 503

    @patch("adapter.x.requests.get")
    def test_connection_error(self, mock_get):
        mock_get.side_effect = requests.exceptions.ConnectionError("refused")
        adapter = XAdapter(bearer_token="test")

        with pytest.raises(SourceAPIError):
            adapter.fetch_items("bitcoin", max_items=10)

    @patch("adapter.x.requests.get")
    def test_malformed_payload(self, mock_get):
        response = create_mock_response()
        response.json.side_effect = ValueError("not json")
        mock_get.return_value = response
        adapter = XAdapter(bearer_token="test")

        with pytest.raises(MalformedPayloadError):
            adapter.fetch_items("bitcoin", max_items=10)

    def test_local_budget_exhausted(self):
        limiter = RateLimiter()
        limiter.configure_limit("x_search", RateLimitConfig(requests_per_window=0, window_seconds=60))
        adapter = XAdapter(bearer_token="test", rate_limiter=limiter)

        with pytest.raises(SourceRateLimitError):
            adapter.fetch_items("bitcoin", max_items=10)


class TestFetchContract:
    """fetch() converts every failure into a FetchResult."""

    @patch("adapter.x.requests.get")
    def test_fetch_success(self, mock_get):
        mock_get.return_value = create_mock_response(json_data=SEARCH_RESPONSE)
        adapter = XAdapter(bearer_token="test")

        result = adapter.fetch("bitcoin", max_items=5)

        assert result.ok is True
        assert result.source == "x_api"
        assert len(result.items) == 2

    @patch("adapter.x.requests.get")
    def test_fetch_failure(self, mock_get):
        mock_get.return_value = create_mock_response(status_code=401)
        adapter = XAdapter(bearer_token="bad")

        result = adapter.fetch("bitcoin", max_items=5)

        assert result.ok is False
        assert result.items == []
        assert result.error_type == "SourceAuthenticationError"
        assert result.diagnostic == "x_api: Invalid or expired bearer token"

    @pytest.mark.asyncio
    @patch("adapter.x.requests.get")
    async def test_fetch_async(self, mock_get):
        mock_get.return_value = create_mock_response(json_data=SEARCH_RESPONSE)
        adapter = XAdapter(bearer_token="test")

        result = await adapter.fetch_async("bitcoin", max_items=5, timeout=2)

        assert result.ok is True
        assert len(result.items) == 2
