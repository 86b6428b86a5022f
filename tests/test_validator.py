"""Tests for meter reading validation."""

from decimal import Decimal

import pytest

from evtally.engine import InvalidReading, MeterReadingValidator, RejectionReason


@pytest.mark.unit
class TestMeterReadingValidator:
    def test_accepts_increase_within_bound(self):
        validator = MeterReadingValidator()
        check = validator.validate(Decimal("100"), "112.5", elapsed_seconds=3600, power_kw=Decimal("50"))

        assert check.accepted
        assert check.unwrap() == Decimal("112.5")

    def test_accepts_unchanged_reading(self):
        check = MeterReadingValidator().validate(Decimal("50"), 50, elapsed_seconds=0)
        assert check.accepted

    def test_rejects_decrease_as_non_monotonic(self):
        check = MeterReadingValidator().validate(Decimal("112.5"), "112.4", elapsed_seconds=60)

        assert not check.accepted
        assert check.reason == RejectionReason.NON_MONOTONIC
        with pytest.raises(InvalidReading) as exc_info:
            check.unwrap()
        assert exc_info.value.reason == RejectionReason.NON_MONOTONIC
        assert exc_info.value.to_dict()["reason"] == "NonMonotonic"

    def test_rejects_implausible_jump_as_out_of_range(self):
        validator = MeterReadingValidator(tolerance=Decimal("1"), slack_kwh=Decimal("0"))
        # 50 kW for 6 minutes is at most 5 kWh
        assert validator.validate(Decimal("0"), "5", 360, Decimal("50")).accepted
        check = validator.validate(Decimal("0"), "5.01", 360, Decimal("50"))

        assert check.reason == RejectionReason.OUT_OF_RANGE

    def test_slack_absorbs_short_intervals(self):
        validator = MeterReadingValidator(slack_kwh=Decimal("0.5"))
        assert validator.validate(Decimal("10"), "10.4", 0, Decimal("7")).accepted
        assert not validator.validate(Decimal("10"), "10.6", 0, Decimal("7")).accepted

    def test_falls_back_to_max_power_without_rating(self):
        validator = MeterReadingValidator(max_power_kw=Decimal("100"), tolerance=1, slack_kwh=0)
        assert validator.max_delta(3600) == Decimal("100")
        assert validator.max_delta(3600, Decimal("0")) == Decimal("100")
        assert validator.max_delta(3600, Decimal("22")) == Decimal("22")

    @pytest.mark.parametrize("candidate", ["abc", None, "NaN", "Infinity", -1, True])
    def test_rejects_garbage_as_out_of_range(self, candidate):
        check = MeterReadingValidator().validate(Decimal("0"), candidate, 60)

        assert check.reason == RejectionReason.OUT_OF_RANGE

    def test_float_input_does_not_pick_up_binary_noise(self):
        check = MeterReadingValidator().validate(Decimal("0"), 0.1, 3600)
        assert check.unwrap() == Decimal("0.1")

    def test_validate_start_ignores_plausibility_bound(self):
        validator = MeterReadingValidator()
        assert validator.validate_start("98765.4").unwrap() == Decimal("98765.4")
        assert validator.validate_start(-3).reason == RejectionReason.OUT_OF_RANGE
