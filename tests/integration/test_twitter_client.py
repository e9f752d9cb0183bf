"""
Integration tests for TwitterClient.

Exercises the tweepy boundary with real ``requests.Response`` objects and
real tweepy exceptions; only ``tweepy.Client`` itself is mocked.

Verifies:
- JSON payloads and parameters passed to the SDK
- x-rate-limit-* headers parsed and forwarded to the ledger
- tweepy / requests failures converted into PlatformApiError
"""

import json
from datetime import datetime
from unittest.mock import MagicMock

import pytest
import requests
import tweepy

from mentionbot.rate_limiter import API_CALL, TWEET, RateLimitLedger
from mentionbot.twitter_client import (
    MAX_MENTION_RESULTS,
    MIN_MENTION_RESULTS,
    PlatformApiError,
    TwitterClient,
    parse_rate_limit,
)

RESET_EPOCH = 1764170100  # fixed reset timestamp used in headers


def make_response(status=200, body=None, headers=None) -> requests.Response:
    response = requests.Response()
    response.status_code = status
    response.reason = "OK" if status < 400 else "Error"
    response._content = json.dumps(body if body is not None else {}).encode()
    response.headers.update(headers or {})
    response.url = "https://api.twitter.com/2/test"
    return response


def quota_headers(limit=15, remaining=14, reset=RESET_EPOCH) -> dict:
    return {
        "x-rate-limit-limit": str(limit),
        "x-rate-limit-remaining": str(remaining),
        "x-rate-limit-reset": str(reset),
    }


@pytest.fixture
def sdk():
    return MagicMock(spec=tweepy.Client)


@pytest.mark.integration
class TestRateLimitHeaders:

    def test_parse(self):
        quota = parse_rate_limit(quota_headers(remaining=3))
        assert quota.limit == 15
        assert quota.remaining == 3
        assert quota.reset == datetime.fromtimestamp(RESET_EPOCH)

    def test_missing_or_malformed(self):
        assert parse_rate_limit({}) is None
        assert parse_rate_limit(None) is None
        assert parse_rate_limit(quota_headers(remaining="many")) is None


@pytest.mark.integration
@pytest.mark.asyncio
class TestTwitterClient:

    async def test_get_mentions(self, sdk, mention_payload):
        sdk.get_users_mentions.return_value = make_response(body=mention_payload)
        client = TwitterClient(sdk)

        payload = await client.get_mentions("999", since_id="1000", max_results=10)

        assert payload == mention_payload
        kwargs = sdk.get_users_mentions.call_args.kwargs
        assert kwargs["id"] == "999"
        assert kwargs["since_id"] == "1000"
        assert "referenced_tweets.id" in kwargs["expansions"]
        assert "entities" in kwargs["tweet_fields"]

    @pytest.mark.parametrize(
        "requested,sent",
        [(1, MIN_MENTION_RESULTS), (10, 10), (500, MAX_MENTION_RESULTS)],
    )
    async def test_max_results_clamped(self, sdk, requested, sent):
        sdk.get_users_mentions.return_value = make_response(body={"meta": {}})
        client = TwitterClient(sdk)

        await client.get_mentions("999", max_results=requested)

        assert sdk.get_users_mentions.call_args.kwargs["max_results"] == sent
        assert "since_id" not in sdk.get_users_mentions.call_args.kwargs

    async def test_quota_forwarded_to_ledger(self, sdk):
        ledger = RateLimitLedger()
        sdk.get_users_mentions.return_value = make_response(
            body={"meta": {}}, headers=quota_headers(remaining=0)
        )
        client = TwitterClient(sdk, quota_listener=ledger.observe_remote)

        await client.get_mentions("999")

        assert ledger.remote_quota(API_CALL).remaining == 0
        assert client.rate_limits["mentions"].remaining == 0

    async def test_unmapped_endpoint_not_forwarded(self, sdk):
        ledger = RateLimitLedger()
        sdk.get_tweet.return_value = make_response(
            body={"data": {"id": "1", "text": "x"}}, headers=quota_headers()
        )
        client = TwitterClient(sdk, quota_listener=ledger.observe_remote)

        await client.get_tweet("1")

        assert ledger.remote_quota(API_CALL) is None
        assert "tweet" in client.rate_limits

    async def test_create_tweet(self, sdk):
        ledger = RateLimitLedger()
        sdk.create_tweet.return_value = make_response(
            status=201,
            body={"data": {"id": "2000", "text": "gm"}},
            headers=quota_headers(limit=100, remaining=99),
        )
        client = TwitterClient(sdk, quota_listener=ledger.observe_remote)

        tweet_id = await client.create_tweet("gm", in_reply_to_tweet_id="1001")

        assert tweet_id == "2000"
        sdk.create_tweet.assert_called_once_with(
            text="gm", user_auth=True, in_reply_to_tweet_id="1001"
        )
        assert ledger.remote_quota(TWEET).remaining == 99

    async def test_too_many_requests(self, sdk):
        response = make_response(
            status=429,
            body={"title": "Too Many Requests", "detail": "Too Many Requests"},
            headers=quota_headers(remaining=0),
        )
        sdk.get_users_mentions.side_effect = tweepy.errors.TooManyRequests(response)
        client = TwitterClient(sdk)

        with pytest.raises(PlatformApiError) as exc_info:
            await client.get_mentions("999")

        error = exc_info.value
        assert error.is_rate_limit is True
        assert error.retryable is True
        assert error.reset_at == datetime.fromtimestamp(RESET_EPOCH)

    async def test_too_many_requests_without_headers(self, sdk):
        response = make_response(status=429, body={"detail": "Too Many Requests"})
        sdk.get_users_mentions.side_effect = tweepy.errors.TooManyRequests(response)
        client = TwitterClient(sdk)

        with pytest.raises(PlatformApiError) as exc_info:
            await client.get_mentions("999")

        assert exc_info.value.reset_at > datetime.now()

    async def test_server_error_retryable(self, sdk):
        response = make_response(status=503, body={"detail": "Service Unavailable"})
        sdk.get_users_mentions.side_effect = tweepy.errors.TwitterServerError(response)
        client = TwitterClient(sdk)

        with pytest.raises(PlatformApiError) as exc_info:
            await client.get_mentions("999")

        assert exc_info.value.status_code == 503
        assert exc_info.value.retryable is True

    async def test_forbidden_not_retryable(self, sdk):
        response = make_response(
            status=403,
            body={"errors": [{"message": "You are not allowed to create a Tweet with duplicate content."}]},
        )
        sdk.create_tweet.side_effect = tweepy.errors.Forbidden(response)
        client = TwitterClient(sdk)

        with pytest.raises(PlatformApiError) as exc_info:
            await client.create_tweet("gm")

        assert exc_info.value.status_code == 403
        assert exc_info.value.retryable is False
        assert "duplicate content" in str(exc_info.value)

    async def test_network_error_retryable(self, sdk):
        sdk.get_users_mentions.side_effect = requests.exceptions.ConnectionError("reset by peer")
        client = TwitterClient(sdk)

        with pytest.raises(PlatformApiError) as exc_info:
            await client.get_mentions("999")

        assert exc_info.value.retryable is True
        assert exc_info.value.status_code is None

    async def test_create_tweet_without_id(self, sdk):
        sdk.create_tweet.return_value = make_response(status=201, body={"data": {}})
        client = TwitterClient(sdk)

        with pytest.raises(PlatformApiError):
            await client.create_tweet("gm")

    async def test_time_until_reset_unknown_endpoint(self, sdk):
        client = TwitterClient(sdk)
        assert client.time_until_reset("mentions") == 0.0
        assert client.is_rate_limited("mentions") is False

    async def test_get_user(self, sdk, payload_factory):
        sdk.get_user.return_value = make_response(body={"data": payload_factory.user("100", "curious")})
        client = TwitterClient(sdk)

        payload = await client.get_user("100")

        assert payload["data"]["username"] == "curious"
        kwargs = sdk.get_user.call_args.kwargs
        assert kwargs["id"] == "100"
        assert "description" in kwargs["user_fields"]

    async def test_search_conversation_quota_tracked(self, sdk):
        reset = int(datetime.now().timestamp()) + 600
        sdk.search_recent_tweets.return_value = make_response(
            body={"data": []}, headers=quota_headers(limit=60, remaining=0, reset=reset)
        )
        client = TwitterClient(sdk)

        await client.search_conversation("400", max_results=4)

        kwargs = sdk.search_recent_tweets.call_args.kwargs
        assert kwargs["query"] == "conversation_id:400"
        assert kwargs["max_results"] == 10
        assert client.is_rate_limited("search") is True
        assert 500 < client.time_until_reset("search") <= 600
