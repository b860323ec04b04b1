import pytest

from notifications import AlertKind, decide_alert
from services import BudgetTier, derive_status


@pytest.mark.parametrize(
    "spending, tier",
    [(0, BudgetTier.good), (799, BudgetTier.good), (800, BudgetTier.warning),
     (1000, BudgetTier.warning), (1001, BudgetTier.over)],
)
def test_tier_boundaries_for_threshold_80(spending, tier):
    assert derive_status(1000, spending, 80).tier == tier


def test_percentage_is_capped_but_overage_is_not():
    status = derive_status(1000, 2500, 80)
    assert status.percentage_used == 100
    assert status.remaining == 0
    assert status.is_over_budget is True


def test_exactly_at_amount_is_not_over_budget():
    status = derive_status(500, 500, 80)
    assert status.is_over_budget is False
    assert status.percentage_used == 100
    assert status.remaining == 0


def test_zero_amount_reports_zero_percent():
    status = derive_status(0, 0, 80)
    assert status.percentage_used == 0
    assert status.is_over_budget is False

    spent = derive_status(0, 10, 80)
    assert spent.percentage_used == 0
    assert spent.is_over_budget is True
    assert spent.tier == BudgetTier.over


@pytest.mark.parametrize("amount", [0, 1, 250, 1000])
@pytest.mark.parametrize("spending", [0, 0.5, 250, 999.99, 5000])
def test_remaining_and_percentage_ranges(amount, spending):
    status = derive_status(amount, spending, 80)
    assert status.remaining == max(0, amount - spending)
    assert 0 <= status.percentage_used <= 100
    assert status.is_over_budget == (spending > amount)


def test_alert_decision_is_exclusive():
    over = derive_status(1000, 1001, 80)
    assert decide_alert(1000, 1001, over, 80) is AlertKind.exceeded

    near = derive_status(1000, 850, 80)
    assert decide_alert(1000, 850, near, 80) is AlertKind.threshold

    fine = derive_status(1000, 100, 80)
    assert decide_alert(1000, 100, fine, 80) is AlertKind.none
