"""Tests for RateSpec, Decision and BucketState."""

from datetime import timedelta

import pytest

from cellgate.exceptions import InvalidSpecError
from cellgate.services.gcra.models import NEVER, NEVER_US, BucketState, Decision, RateSpec


class TestRateSpec:
    """Test RateSpec construction and validation."""

    def test_per_second(self):
        spec = RateSpec.per_second(10)
        assert spec.permitted == 10
        assert spec.period_us == 1_000_000
        assert spec.burst == 10
        assert spec.emission_interval_us == 100_000
        assert spec.burst_offset_us == 1_000_000

    def test_per_minute_and_hour(self):
        assert RateSpec.per_minute(60).emission_interval_us == 1_000_000
        assert RateSpec.per_hour(3600).emission_interval_us == 1_000_000

    def test_custom_period_from_timedelta(self):
        spec = RateSpec.per_period(5, timedelta(milliseconds=250))
        assert spec.period_us == 250_000
        assert spec.emission_interval_us == 50_000
        assert spec.period == timedelta(milliseconds=250)

    def test_custom_period_from_seconds(self):
        spec = RateSpec.per_period(3, 1.5)
        assert spec.period_us == 1_500_000
        assert spec.emission_interval_us == 500_000

    def test_burst_override(self):
        spec = RateSpec.per_second(2, burst=20)
        assert spec.burst == 20
        assert spec.emission_interval_us == 500_000
        assert spec.burst_offset_us == 10_000_000

    def test_interval_truncates_once(self):
        """Interval is an integer computed once at construction."""
        spec = RateSpec.per_second(3)
        assert spec.emission_interval_us == 333_333

    @pytest.mark.parametrize("permitted", [0, -1])
    def test_rejects_non_positive_permitted(self, permitted):
        with pytest.raises(InvalidSpecError):
            RateSpec.per_second(permitted)

    @pytest.mark.parametrize("period", [0, -1, timedelta(0)])
    def test_rejects_non_positive_period(self, period):
        with pytest.raises(InvalidSpecError):
            RateSpec.per_period(1, period)

    def test_rejects_bad_burst(self):
        with pytest.raises(InvalidSpecError):
            RateSpec.per_second(1, burst=0)

    def test_rejects_rate_finer_than_resolution(self):
        with pytest.raises(InvalidSpecError):
            RateSpec(permitted=10, period_us=5)

    def test_rejects_non_integer_permitted(self):
        with pytest.raises(InvalidSpecError):
            RateSpec(permitted=1.5, period_us=1_000_000)

    def test_invalid_spec_is_value_error(self):
        with pytest.raises(ValueError):
            RateSpec.per_second(0)

    def test_specs_are_hashable_and_comparable(self):
        assert RateSpec.per_second(10) == RateSpec(permitted=10, period_us=1_000_000, burst=10)
        assert len({RateSpec.per_second(10), RateSpec.per_second(10)}) == 1


class TestDecision:
    """Test Decision parsing and conversions."""

    def test_from_reply_allowed(self):
        decision = Decision.from_reply([1, 9, 0, 100_000], limit=10)
        assert decision.allowed is True
        assert decision.admitted == 1
        assert decision.remaining == 9
        assert decision.retry_after == 0.0
        assert decision.reset_after == pytest.approx(0.1)

    def test_from_reply_denied(self):
        decision = Decision.from_reply([0, 0, 100_000, 1_000_000], limit=10)
        assert decision.allowed is False
        assert decision.retry_after == pytest.approx(0.1)
        assert decision.satisfiable is True

    def test_never_sentinel(self):
        decision = Decision.from_reply([0, 3, NEVER_US, 0], limit=3)
        assert decision.retry_after == NEVER
        assert decision.satisfiable is False

    def test_from_reply_rejects_bad_shape(self):
        with pytest.raises(ValueError):
            Decision.from_reply([1, 2], limit=10)

    def test_to_dict(self):
        data = Decision(True, 10, 9, 0, 100_000, admitted=1).to_dict()
        assert data == {
            "allowed": True,
            "limit": 10,
            "remaining": 9,
            "retry_after": 0.0,
            "reset_after": 0.1,
            "admitted": 1,
        }


class TestBucketState:
    def test_encode_decode(self):
        state = BucketState(tat_us=1_767_225_600_123_456)
        assert BucketState.decode(state.encode()) == state
        assert BucketState.decode(state.encode().encode()) == state

    def test_decode_absent(self):
        assert BucketState.decode(None) is None
