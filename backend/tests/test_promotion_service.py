"""Tests for promotion management and validation."""

import pytest
from datetime import date, datetime, timezone
from decimal import Decimal

from cueclub.models.promotion import PromotionScope, parse_rule, ProductRule, TimeRule
from cueclub.services.errors import ConflictError, NotFoundError, ValidationFailure
from cueclub.services.promotion_service import PromotionService

AT = datetime(2026, 10, 12, 10, 45, tzinfo=timezone.utc)


def _payload(**overrides) -> dict:
    data = {
        "name": "Happy hour",
        "code": "happy",
        "scope": "time",
        "rule": {"min_minutes": 30},
        "discount_type": "percent",
        "discount_value": Decimal("20"),
        "discount_target": "play",
        "days_of_week": [1, 2, 3, 4, 5],
        "time_ranges": [{"from": "14:00", "to": "17:00"}],
    }
    data.update(overrides)
    return data


@pytest.fixture
def service(db_session):
    return PromotionService(db_session)


class TestParseRule:
    def test_time_rule(self):
        assert parse_rule("time", {"table_type_ids": [1], "min_minutes": 60}) == TimeRule((1,), 60)

    def test_product_rule_with_combo(self):
        rule = parse_rule("product", {"combo": [{"product_id": 3, "qty": 2}]})
        assert isinstance(rule, ProductRule)
        assert rule.combo[0].product_id == 3
        assert rule.combo[0].qty == 2

    def test_keys_from_another_scope_are_rejected(self):
        with pytest.raises(ValidationFailure):
            parse_rule("time", {"min_subtotal": 100})

    def test_bad_combo_qty(self):
        with pytest.raises(ValidationFailure):
            parse_rule("product", {"combo": [{"product_id": 1, "qty": 0}]})

    def test_negative_threshold(self):
        with pytest.raises(ValidationFailure):
            parse_rule("bill", {"min_subtotal": -5})


class TestCreate:
    def test_create_normalizes_code(self, service):
        promo = service.create(_payload())
        assert promo.id is not None
        assert promo.code == "HAPPY"
        assert promo.scope == PromotionScope.TIME
        assert promo.apply_order == 100
        assert promo.stackable is True

    def test_duplicate_code_conflicts(self, service):
        service.create(_payload())
        with pytest.raises(ConflictError):
            service.create(_payload(code="HAPPY"))

    @pytest.mark.parametrize(
        "overrides",
        [
            {"discount_value": Decimal("120")},
            {"time_ranges": [{"from": "25:00", "to": "26:00"}]},
            {"days_of_week": [7]},
            {"valid_from": date(2026, 12, 1), "valid_to": date(2026, 11, 1)},
            {"rule": {"category_ids": [1]}},
            {"scope": "product", "rule": {"product_ids": [1]}, "discount_target": "play"},
            {"max_amount": -1},
            {"name": ""},
            {"scope": "seasonal"},
            {"discount_type": "bogo"},
            {"discount_value": "ten percent"},
            {"discount_target": "tip"},
        ],
    )
    def test_invalid_payloads(self, service, overrides):
        with pytest.raises(ValidationFailure):
            service.create(_payload(**overrides))


class TestUpdate:
    def test_partial_update(self, service):
        promo = service.create(_payload())
        updated = service.update(promo.id, {"name": "Late happy hour", "discount_value": Decimal("25")})
        assert updated.name == "Late happy hour"
        assert updated.discount_value == Decimal("25")
        assert updated.code == "HAPPY"

    def test_update_revalidates_against_stored_values(self, service):
        promo = service.create(_payload())
        with pytest.raises(ValidationFailure):
            service.update(promo.id, {"scope": "bill"})

    def test_update_code_collision(self, service):
        service.create(_payload())
        other = service.create(_payload(code="other"))
        with pytest.raises(ConflictError):
            service.update(other.id, {"code": "happy"})

    def test_toggle_and_reorder(self, service):
        promo = service.create(_payload())
        assert service.set_active(promo.id, False).active is False
        assert service.set_apply_order(promo.id, 5).apply_order == 5

    def test_delete(self, service):
        promo = service.create(_payload())
        service.delete(promo.id)
        with pytest.raises(NotFoundError):
            service.get(promo.id)


class TestQueries:
    def test_list_filters(self, service):
        service.create(_payload())
        service.create(_payload(code="bill5", scope="bill", rule={}, discount_target="bill", apply_order=1))
        service.create(_payload(code="off", active=False))

        rows, total = service.list()
        assert total == 3
        assert rows[0].code == "BILL5"
        rows, total = service.list(scope=PromotionScope.BILL)
        assert [p.code for p in rows] == ["BILL5"]
        rows, total = service.list(active=False)
        assert [p.code for p in rows] == ["OFF"]

    def test_list_effective_at(self, service):
        service.create(_payload())
        service.create(_payload(code="allday", time_ranges=[]))
        rows, total = service.list(effective_at=AT)
        assert [p.code for p in rows] == ["ALLDAY"]

    def test_load_effective_skips_inactive_and_expired(self, service):
        service.create(_payload(code="live", time_ranges=[]))
        service.create(_payload(code="off", active=False))
        service.create(_payload(code="old", valid_to=date(2026, 1, 1)))
        service.create(_payload(code="later", valid_from=date(2027, 1, 1)))

        views = service.load_effective(AT)
        assert [v.code for v in views] == ["LIVE"]
