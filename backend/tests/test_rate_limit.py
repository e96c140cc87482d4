from starlette.requests import Request

from sunrise.services.rate_limit import RateLimiter
from sunrise.utils.ip import get_client_ip, is_valid_ip


def _request(headers: dict[str, str]) -> Request:
    return Request({
        "type": "http",
        "method": "GET",
        "path": "/",
        "headers": [(k.lower().encode(), v.encode()) for k, v in headers.items()],
    })


class TestRateLimiter:
    """Tests for the sliding-window limiter."""

    def test_allows_up_to_limit(self):
        limiter = RateLimiter("test", interval=60, max_requests=3)

        results = [limiter.check("1.2.3.4") for _ in range(4)]

        assert [r.success for r in results] == [True, True, True, False]
        assert [r.remaining for r in results] == [2, 1, 0, 0]
        assert results[0].limit == 3

    def test_keys_are_independent(self):
        limiter = RateLimiter("test", interval=60, max_requests=1)

        assert limiter.check("1.1.1.1").success
        assert limiter.check("2.2.2.2").success
        assert not limiter.check("1.1.1.1").success

    def test_window_slides(self, monkeypatch):
        now = [1000.0]
        monkeypatch.setattr("sunrise.services.rate_limit.time.time", lambda: now[0])
        limiter = RateLimiter("test", interval=60, max_requests=1)

        assert limiter.check("k").success
        assert not limiter.check("k").success
        now[0] += 61
        assert limiter.check("k").success

    def test_evicts_least_recently_used_key(self):
        limiter = RateLimiter("test", interval=60, max_requests=1, max_tokens=2)

        limiter.check("a")
        limiter.check("b")
        limiter.check("c")

        # "a" was evicted, so it gets a fresh window
        assert limiter.check("a").success
        assert not limiter.check("c").success

    def test_headers(self):
        result = RateLimiter("test", interval=60, max_requests=5).check("k")
        assert result.headers["X-RateLimit-Limit"] == "5"
        assert result.headers["X-RateLimit-Remaining"] == "4"
        assert int(result.headers["X-RateLimit-Reset"]) > 0


class TestClientIp:
    """Tests for client IP resolution behind proxies."""

    def test_forwarded_for_first_entry(self):
        assert get_client_ip(_request({"X-Forwarded-For": "203.0.113.7, 10.0.0.1"})) == "203.0.113.7"

    def test_real_ip(self):
        assert get_client_ip(_request({"X-Real-IP": "198.51.100.2"})) == "198.51.100.2"

    def test_invalid_forwarded_falls_back_to_real_ip(self):
        request = _request({"X-Forwarded-For": "garbage", "X-Real-IP": "2001:db8::1"})
        assert get_client_ip(request) == "2001:db8::1"

    def test_default(self):
        assert get_client_ip(_request({})) == "127.0.0.1"

    def test_is_valid_ip(self):
        assert is_valid_ip("10.0.0.1")
        assert is_valid_ip("::1")
        assert not is_valid_ip("999.0.0.1")
        assert not is_valid_ip("")


class TestRateLimitByClient:
    """Limits apply per client address."""

    async def test_separate_clients(self, client):
        body = {"email": "ghost@example.com", "password": "whatever"}
        for _ in range(5):
            await client.post("/api/auth/sign-in/email", json=body, headers={"X-Forwarded-For": "203.0.113.1"})

        blocked = await client.post("/api/auth/sign-in/email", json=body, headers={"X-Forwarded-For": "203.0.113.1"})
        other = await client.post("/api/auth/sign-in/email", json=body, headers={"X-Forwarded-For": "203.0.113.2"})

        assert blocked.status_code == 429
        assert other.status_code == 401
