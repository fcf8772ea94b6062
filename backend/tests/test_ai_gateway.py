"""
Tests for the retrying AI gateway and the daily quota counter.

Async code is driven with asyncio.run; sleeps are recorded instead of taken.
"""
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import asyncio
from datetime import date

import httpx
import pytest
from eiken_app.ai_gateway import AIGateway, DailyQuotaCounter, is_rate_limited
from eiken_app.errors import (
    CredentialMissingOrInvalidError,
    GenerationExhaustedError,
    QuotaExceededError,
)

from conftest import ScriptedClient


class SleepRecorder:
    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


class FakeToday:
    def __init__(self, day):
        self.day = day

    def __call__(self):
        return self.day


def _gateway(client, quota=None, **kw):
    sleeper = SleepRecorder()
    gw = AIGateway(client, quota or DailyQuotaCounter(100), sleep=sleeper, **kw)
    return gw, sleeper


class TestSuccess:
    def test_first_attempt(self):
        client = ScriptedClient('{"ok": true}')
        gw, sleeper = _gateway(client)
        assert asyncio.run(gw.generate("p")) == '{"ok": true}'
        assert client.prompts == ["p"]
        assert sleeper.delays == []
        assert gw.quota.count == 1

    def test_recovers_after_transient_error(self):
        client = ScriptedClient(RuntimeError("connection reset"), "done")
        gw, sleeper = _gateway(client, base_delay=5.0)
        assert asyncio.run(gw.generate("p")) == "done"
        assert sleeper.delays == [5.0]
        # only the successful call is counted
        assert gw.quota.count == 1


class TestBackoff:
    def test_rate_limit_backoff_grows_with_attempt(self):
        client = ScriptedClient(RuntimeError("429 Too Many Requests"), RuntimeError("Quota exceeded"), "ok")
        gw, sleeper = _gateway(client, base_delay=5.0, max_retries=3)
        assert asyncio.run(gw.generate("p")) == "ok"
        assert sleeper.delays == [5.0, 10.0]

    def test_other_errors_use_flat_delay(self):
        client = ScriptedClient(RuntimeError("boom"), RuntimeError("boom"), "ok")
        gw, sleeper = _gateway(client, base_delay=2.0, max_retries=3)
        asyncio.run(gw.generate("p"))
        assert sleeper.delays == [2.0, 2.0]

    def test_no_sleep_after_final_attempt(self):
        client = ScriptedClient(RuntimeError("boom"))
        gw, sleeper = _gateway(client, base_delay=1.0, max_retries=3)
        with pytest.raises(GenerationExhaustedError):
            asyncio.run(gw.generate("p"))
        assert len(client.prompts) == 3
        assert sleeper.delays == [1.0, 1.0]


class TestExhaustion:
    def test_transport_failure_is_500(self):
        gw, _ = _gateway(ScriptedClient(RuntimeError("network down")), max_retries=2)
        with pytest.raises(GenerationExhaustedError) as info:
            asyncio.run(gw.generate("p"))
        assert info.value.status_code == 500
        assert not info.value.rate_limited
        assert "network down" in str(info.value)
        assert gw.quota.count == 0

    def test_rate_limit_exhaustion_is_429(self):
        gw, _ = _gateway(ScriptedClient(RuntimeError("HTTP 429")), max_retries=2)
        with pytest.raises(GenerationExhaustedError) as info:
            asyncio.run(gw.generate("p"))
        assert info.value.status_code == 429
        assert info.value.rate_limited

    def test_credential_error_not_retried(self):
        client = ScriptedClient(CredentialMissingOrInvalidError("bad key"))
        gw, sleeper = _gateway(client, max_retries=3)
        with pytest.raises(CredentialMissingOrInvalidError):
            asyncio.run(gw.generate("p"))
        assert len(client.prompts) == 1
        assert sleeper.delays == []

    def test_deadline(self):
        class Slow:
            async def generate(self, prompt):
                await asyncio.sleep(1)
                return "late"

        gw = AIGateway(Slow(), DailyQuotaCounter(10), deadline=0.01)
        with pytest.raises(GenerationExhaustedError):
            asyncio.run(gw.generate("p"))


class TestQuota:
    def test_refuses_without_calling_client(self):
        quota = DailyQuotaCounter(2)
        quota.reserve()
        quota.reserve()
        client = ScriptedClient("never")
        gw, _ = _gateway(client, quota)
        with pytest.raises(QuotaExceededError) as info:
            asyncio.run(gw.generate("p"))
        assert client.prompts == []
        assert str(info.value) == "API quota exceeded. Daily limit: 2, Used: 2"
        assert info.value.status_code == 429

    def test_not_enforced_still_counts(self):
        quota = DailyQuotaCounter(1, enforce=False)
        gw, _ = _gateway(ScriptedClient("ok"), quota)
        asyncio.run(gw.generate("p"))
        asyncio.run(gw.generate("p"))
        assert quota.count == 2

    def test_resets_on_new_day(self):
        today = FakeToday(date(2024, 5, 1))
        quota = DailyQuotaCounter(1, today=today)
        quota.reserve()
        with pytest.raises(QuotaExceededError):
            quota.reserve()
        today.day = date(2024, 5, 2)
        assert quota.count == 0
        assert quota.reset_date == date(2024, 5, 2)
        quota.reserve()

    def test_snapshot_and_reset(self):
        quota = DailyQuotaCounter(10)
        quota.reserve()
        quota.reserve()
        snap = quota.snapshot()
        assert (snap.count, snap.limit, snap.remaining) == (2, 10, 8)
        quota.reset()
        assert quota.count == 0

    def test_concurrent_requests_share_the_budget(self):
        quota = DailyQuotaCounter(3)
        gw, _ = _gateway(ScriptedClient("ok"), quota, max_retries=1)

        async def many():
            return await asyncio.gather(*(gw.generate("p") for _ in range(5)), return_exceptions=True)

        results = asyncio.run(many())
        assert sum(1 for r in results if r == "ok") == 3
        assert sum(1 for r in results if isinstance(r, QuotaExceededError)) == 2


class TestClassification:
    def test_http_429(self):
        request = httpx.Request("POST", "https://example.test")
        response = httpx.Response(429, request=request)
        assert is_rate_limited(httpx.HTTPStatusError("Too Many Requests", request=request, response=response))

    def test_message_markers(self):
        assert is_rate_limited(RuntimeError("RESOURCE_EXHAUSTED: quota"))
        assert not is_rate_limited(RuntimeError("timeout"))
