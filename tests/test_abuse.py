"""
Abuse Detection Tests
=====================
Signal weights, score aggregation and actions.
"""

import pytest

BROWSER_UA = "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 Chrome/124.0 Safari/537.36"
IP = "203.0.113.50"


async def _pump(store, key, times):
    for _ in range(times):
        await store.increment(key, 3600)


@pytest.fixture
def counters(clock):
    from authgate_core.stores import InMemoryCounterStore

    return InMemoryCounterStore(clock=clock)


@pytest.fixture
def detector(counters):
    from authgate_core.abuse import AbuseDetector

    return AbuseDetector(counters)


class TestAbuseDetector:
    """Tests for abuse scoring."""

    @pytest.mark.asyncio
    async def test_clean_request_allowed(self, detector):
        from authgate_core.abuse import AbuseAction

        result = await detector.check_abuse("idhash", IP, user_agent=BROWSER_UA, geo_country="DE")

        assert result.action == AbuseAction.ALLOW
        assert result.risk_score == 0.0
        assert not result.suspicious
        assert result.reasons == []

    @pytest.mark.asyncio
    async def test_velocity_alone_is_allowed(self, detector, counters):
        """A single velocity signal (0.3) stays below the challenge threshold."""
        from authgate_core.abuse import AbuseAction, AbuseSignalType

        await _pump(counters, detector.identifier_velocity_key("idhash"), 10)

        result = await detector.check_abuse("idhash", IP, user_agent=BROWSER_UA)

        assert result.risk_score == 0.3
        assert result.action == AbuseAction.ALLOW
        assert [s.signal_type for s in result.signals] == [AbuseSignalType.IDENTIFIER_VELOCITY]
        assert result.signals[0].observed == 11

    @pytest.mark.asyncio
    async def test_velocity_and_geo_require_captcha(self, detector, counters):
        """0.3 + 0.2 lands exactly on the challenge threshold."""
        from authgate_core.abuse import AbuseAction

        await _pump(counters, detector.identifier_velocity_key("idhash"), 10)
        await _pump(counters, detector.geo_velocity_key("idhash"), 5)

        result = await detector.check_abuse("idhash", IP, user_agent=BROWSER_UA, geo_country="BR")

        assert result.risk_score == 0.5
        assert result.action == AbuseAction.CHALLENGE
        assert result.suspicious

    @pytest.mark.asyncio
    async def test_all_signals_block(self, detector, counters):
        """0.3 + 0.2 + 0.2 + 0.1 reaches the block threshold."""
        from authgate_core.abuse import AbuseAction

        await _pump(counters, detector.identifier_velocity_key("idhash"), 10)
        await _pump(counters, detector.geo_velocity_key("idhash"), 5)
        await _pump(counters, detector.ip_velocity_key(IP), 20)

        result = await detector.check_abuse("idhash", IP, user_agent="curl", geo_country="BR")

        assert result.risk_score == 0.8
        assert result.action == AbuseAction.BLOCK
        assert len(result.reasons) == 4

    @pytest.mark.asyncio
    async def test_geo_counter_needs_country(self, detector, counters):
        """Requests without a resolved country never feed the geo signal."""
        await _pump(counters, detector.geo_velocity_key("idhash"), 50)

        result = await detector.check_abuse("idhash", IP, user_agent=BROWSER_UA)

        assert result.risk_score == 0.0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("user_agent", ["Googlebot/2.1 (+http://www.google.com/bot.html)", "python", ""])
    async def test_suspicious_user_agents(self, detector, user_agent):
        from authgate_core.abuse import AbuseSignalType

        result = await detector.check_abuse("idhash", IP, user_agent=user_agent)

        assert result.risk_score == 0.1
        assert result.signals[0].signal_type == AbuseSignalType.USER_AGENT

    @pytest.mark.asyncio
    async def test_missing_user_agent_not_scored(self, detector):
        result = await detector.check_abuse("idhash", IP, user_agent=None)

        assert result.risk_score == 0.0

    @pytest.mark.asyncio
    async def test_ip_counter_keys_hash_the_address(self, detector, counters):
        await detector.check_abuse("idhash", IP)

        key = detector.ip_velocity_key(IP)
        assert IP not in key
        assert (await counters.get(key)).count == 1

    @pytest.mark.asyncio
    async def test_custom_thresholds(self, counters):
        from authgate_core.abuse import AbuseAction, AbuseDetector
        from authgate_core.config import AbuseConfig

        detector = AbuseDetector(counters, AbuseConfig(velocity_threshold=1, velocity_weight=0.9))
        await detector.check_abuse("idhash", IP)

        result = await detector.check_abuse("idhash", IP)

        assert result.action == AbuseAction.BLOCK

    @pytest.mark.asyncio
    async def test_reset_counters(self, detector, counters):
        await _pump(counters, detector.identifier_velocity_key("idhash"), 10)

        await detector.reset_counters("idhash")
        result = await detector.check_abuse("idhash", IP, user_agent=BROWSER_UA)

        assert result.risk_score == 0.0

    @pytest.mark.asyncio
    async def test_result_to_dict(self, detector):
        result = await detector.check_abuse("idhash", IP, user_agent="bot")
        data = result.to_dict()

        assert data["action"] == "allow"
        assert data["signals"][0]["signal_type"] == "user_agent"
