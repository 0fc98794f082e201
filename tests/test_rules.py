from decimal import Decimal
from uuid import uuid4

import pytest

from loyalty_api.core.settings import settings
from loyalty_api.services.ledger import (
    LedgerValidationError,
    MerchantLoyaltySettings,
    RuleViolationError,
    RuleViolationKind,
    check_redeem_request,
    compute_points_earned,
    evaluate_redeem_request,
)
from loyalty_api.services.ledger.rules import percent_cap


def _config(**overrides) -> MerchantLoyaltySettings:
    return MerchantLoyaltySettings(merchant_id=uuid4(), **overrides)


@pytest.fixture
def stepped_config() -> MerchantLoyaltySettings:
    return _config(redeem_step=50, redeem_max_percent=50, redeem_min_points=100)


def test_redeem_within_all_limits_passes(stepped_config) -> None:
    assert check_redeem_request(stepped_config, 150, Decimal("1000")) is None


@pytest.mark.parametrize(
    ("points", "kind", "limit"),
    [
        (30, RuleViolationKind.BELOW_MINIMUM, 100),
        (120, RuleViolationKind.NOT_STEP_ALIGNED, 50),
        (600, RuleViolationKind.EXCEEDS_PERCENT_CAP, 500),
    ],
)
def test_redeem_violations_report_limit(stepped_config, points, kind, limit) -> None:
    violation = check_redeem_request(stepped_config, points, Decimal("1000"))

    assert violation is not None
    assert violation.kind is kind
    assert violation.requested == points
    assert violation.limit == limit


def test_minimum_is_reported_before_step() -> None:
    config = _config(redeem_min_points=100, redeem_step=50)

    violation = check_redeem_request(config, 30, Decimal("1000"))

    assert violation.kind is RuleViolationKind.BELOW_MINIMUM


def test_receipt_cap_applies_after_percent_cap() -> None:
    config = _config(redeem_max_percent=100, max_points_per_receipt=200)

    violation = check_redeem_request(config, 300, Decimal("1000"))

    assert violation.kind is RuleViolationKind.EXCEEDS_RECEIPT_CAP
    assert violation.limit == 200


def test_percent_cap_outside_range_is_ignored() -> None:
    config = _config(redeem_max_percent=150)

    assert check_redeem_request(config, 5000, Decimal("1000")) is None


def test_percent_cap_floors_fractional_limit() -> None:
    assert percent_cap(Decimal("999.99"), 50) == 499
    assert percent_cap(Decimal("0.10"), 100) == 0


def test_zero_points_never_violates_minimum() -> None:
    config = _config(redeem_min_points=100)

    assert check_redeem_request(config, 0, Decimal("10")) is None


def test_negative_points_are_rejected() -> None:
    with pytest.raises(LedgerValidationError):
        check_redeem_request(_config(), -1, Decimal("10"))


def test_evaluate_raises_with_violation_context(stepped_config) -> None:
    with pytest.raises(RuleViolationError) as excinfo:
        evaluate_redeem_request(stepped_config, 600, Decimal("1000"))

    assert excinfo.value.context() == {"kind": "exceeds_percent_cap", "requested": 600, "limit": 500}


def test_earn_formula_respects_threshold() -> None:
    config = _config(earn_rate_per_1000=2, min_receipt_amount_for_earn=Decimal("500"))

    assert compute_points_earned(config, Decimal("1200")) == 2
    assert compute_points_earned(config, Decimal("400")) == 0


def test_earn_formula_has_no_float_truncation() -> None:
    config = _config(earn_rate_per_1000=3)

    assert compute_points_earned(config, Decimal("1000.00")) == 3
    assert compute_points_earned(config, 1999.99) == 5


def test_earn_with_zero_threshold_and_non_positive_amount() -> None:
    config = _config(earn_rate_per_1000=10)

    assert compute_points_earned(config, Decimal("99.99")) == 0
    assert compute_points_earned(config, Decimal("100")) == 1
    assert compute_points_earned(config, 0) == 0


def test_settings_from_merchant_fill_defaults() -> None:
    class _Row:
        id = uuid4()
        earn_rate_per_1000 = None
        redeem_max_percent = None
        min_receipt_amount_for_earn = None
        redeem_min_points = None
        redeem_step = None
        max_points_per_receipt = None
        max_points_per_day = 500

    config = MerchantLoyaltySettings.from_merchant(_Row())

    assert config.earn_rate_per_1000 == 1
    assert config.redeem_max_percent == 100
    assert config.redeem_step == 1
    assert config.min_receipt_amount_for_earn == Decimal("0")
    assert config.as_public_dict()["maxPointsPerDay"] == 500


def test_unset_earn_rate_uses_configured_default(monkeypatch) -> None:
    class _Row:
        id = uuid4()
        earn_rate_per_1000 = None
        redeem_max_percent = None
        min_receipt_amount_for_earn = None
        redeem_min_points = None
        redeem_step = None
        max_points_per_receipt = None
        max_points_per_day = None

    monkeypatch.setattr(settings, "default_earn_rate_per_1000", 5)

    config = MerchantLoyaltySettings.from_merchant(_Row())

    assert config.earn_rate_per_1000 == 5
    assert compute_points_earned(config, Decimal("1000")) == 5

    _Row.earn_rate_per_1000 = 0
    assert MerchantLoyaltySettings.from_merchant(_Row()).earn_rate_per_1000 == 0
