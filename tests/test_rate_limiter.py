"""
EchoMesh - Send cooldown tests.
"""

import pytest

from echomesh.errors import ErrorCode, RateLimitExceeded
from echomesh.rate_limiter import SendCooldown


class TestSendCooldown:
    """Test the minimum interval between sends."""

    def test_first_send_allowed(self, clock):
        cooldown = SendCooldown(1.0, clock)

        assert cooldown.remaining() == 0.0
        cooldown.check()

    def test_second_send_within_interval_rejected(self, clock):
        cooldown = SendCooldown(1.0, clock)
        cooldown.check()
        clock.advance(0.25)

        with pytest.raises(RateLimitExceeded) as exc_info:
            cooldown.check()

        assert exc_info.value.code == ErrorCode.E304_RATE_LIMIT_EXCEEDED
        assert exc_info.value.retry_after == pytest.approx(0.75)

    def test_rejection_does_not_move_timestamp(self, clock):
        """Hammering inside the cooldown never extends it."""
        cooldown = SendCooldown(1.0, clock)
        cooldown.check()

        for _ in range(3):
            clock.advance(0.25)
            with pytest.raises(RateLimitExceeded):
                cooldown.check()

        clock.advance(0.25)
        cooldown.check()

    def test_sends_spaced_by_interval(self, clock):
        cooldown = SendCooldown(1.0, clock)
        for _ in range(5):
            cooldown.check()
            clock.advance(1.0)

    def test_remaining(self, clock):
        cooldown = SendCooldown(2.0, clock)
        cooldown.check()
        clock.advance(0.5)

        assert cooldown.remaining() == pytest.approx(1.5)

    def test_reset(self, clock):
        cooldown = SendCooldown(1.0, clock)
        cooldown.check()
        cooldown.reset()

        cooldown.check()

    def test_zero_interval(self, clock):
        cooldown = SendCooldown(0.0, clock)
        cooldown.check()
        cooldown.check()

    def test_negative_interval(self):
        with pytest.raises(ValueError):
            SendCooldown(-1.0)
