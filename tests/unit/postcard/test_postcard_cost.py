"""
Unit Tests for the Cost Estimator
"""

import pytest

from microservices.postcard_service.cost_estimator import (
    UNIT_COST_CENTS,
    actual_cost,
    estimate,
    format_cents,
    price_to_cents,
    unit_cost,
)
from microservices.postcard_service.models import MailClass, PostcardSize, RecipientStatus


class TestUnitCost:

    def test_table_covers_every_class_and_size(self):
        for mail_class in MailClass:
            for size in PostcardSize:
                assert UNIT_COST_CENTS[(mail_class, size)] > 0

    def test_first_class_6x9(self):
        assert unit_cost(MailClass.FIRST_CLASS, PostcardSize.SIZE_6X9) == 105

    def test_accepts_raw_values(self):
        assert unit_cost("usps_standard", "4x6") == 63

    def test_unknown_combination(self):
        with pytest.raises(ValueError):
            unit_cost("carrier_pigeon", "6x9")


class TestEstimate:

    def test_estimate_is_count_times_unit(self):
        result = estimate(3, MailClass.FIRST_CLASS, PostcardSize.SIZE_6X9)
        assert result.unit_cost_cents == 105
        assert result.total_cost_cents == 315
        assert result.recipient_count == 3

    def test_empty_campaign(self):
        assert estimate(0, MailClass.STANDARD, PostcardSize.SIZE_6X11).total_cost_cents == 0

    def test_negative_count_rejected(self):
        with pytest.raises(ValueError):
            estimate(-1, MailClass.STANDARD, PostcardSize.SIZE_6X11)


class TestPriceToCents:

    @pytest.mark.parametrize("price,expected", [
        ("1.05", 105),
        (1.05, 105),
        ("0.845", 85),
        ("2", 200),
    ])
    def test_conversion(self, price, expected):
        assert price_to_cents(price) == expected

    @pytest.mark.parametrize("price", [None, "", "free", "-1.00"])
    def test_fallback(self, price):
        assert price_to_cents(price, fallback_cents=84) == 84


class TestActualCost:

    def test_failed_recipients_contribute_nothing(self):
        costs = {
            RecipientStatus.SENT: 210,
            RecipientStatus.DELIVERED: 105,
            RecipientStatus.FAILED: 105,
            RecipientStatus.PENDING: 105,
        }
        assert actual_cost(costs) == 315

    def test_format_cents(self):
        assert format_cents(12345) == "$123.45"
        assert format_cents(5) == "$0.05"
