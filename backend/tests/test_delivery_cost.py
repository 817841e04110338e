from decimal import Decimal

import pytest

from maltiti.services.delivery_cost_service import box_count, calculate_delivery_cost, per_box_charge


CHARGES = {
    "city": {"tamale": Decimal("25")},
    "region": {"northern": Decimal("35")},
    "default": Decimal("60"),
}


class TestBoxCount:
    @pytest.mark.parametrize(
        "lines,expected",
        [
            ([(2, 12)], 1),
            ([(12, 12)], 1),
            ([(13, 12)], 2),
            ([(6, 12), (6, 12)], 1),
            ([(7, 12), (6, 12)], 2),
            ([(1, 0)], 1),
        ],
    )
    def test_fractions_add_up_before_rounding(self, lines, expected):
        assert box_count(lines) == expected


class TestPerBoxCharge:
    def test_city_wins_over_region(self):
        assert per_box_charge("Tamale", "Northern", CHARGES) == Decimal("25")

    def test_region_fallback(self):
        assert per_box_charge("Savelugu", " northern ", CHARGES) == Decimal("35")

    def test_default(self):
        assert per_box_charge("Accra", "Greater Accra", CHARGES) == Decimal("60")


class TestCalculateDeliveryCost:
    def test_domestic(self):
        cost = calculate_delivery_cost([(2, 12)], "Ghana", "Tamale", "Northern", CHARGES, "ghana")
        assert cost == Decimal("25.00")

    def test_multiple_boxes(self):
        cost = calculate_delivery_cost([(30, 12)], "ghana", "Accra", "Greater Accra", CHARGES, "ghana")
        assert cost == Decimal("180.00")

    def test_foreign_address_is_costed_later(self):
        assert calculate_delivery_cost([(2, 12)], "Togo", "Lome", "Maritime", CHARGES, "ghana") is None

    def test_reads_app_config(self, app):
        with app.app_context():
            assert calculate_delivery_cost([(2, 12)], "Ghana", "Tamale", "Northern") == Decimal("25.00")
