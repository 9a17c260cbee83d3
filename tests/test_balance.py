"""Unit tests for ledger arithmetic and payment allocation (amounts in paise)."""

import pytest

from fee_ledger.core.balance import (
    LedgerInputs,
    allocate,
    discounted_total,
    fee_status,
    pending_balance,
    recompute,
)
from fee_ledger.core.enums import FeeStatus, PaymentType
from fee_ledger.core.money import from_minor, has_sub_minor_precision, to_minor


CLASS_5000 = 500000
BUS_600 = 60000


def test_discounted_total_never_negative() -> None:
    assert discounted_total(500000, 100000) == 400000
    assert discounted_total(100000, 250000) == 0


def test_pending_balance_never_negative() -> None:
    assert pending_balance(60000, 20000) == 40000
    assert pending_balance(60000, 90000) == 0


@pytest.mark.parametrize(
    "total_fee,total_paid,expected",
    [
        (0, 0, FeeStatus.PAID),
        (100, 0, FeeStatus.UNPAID),
        (100, 1, FeeStatus.PARTIAL),
        (100, 99, FeeStatus.PARTIAL),
        (100, 100, FeeStatus.PAID),
        (100, 150, FeeStatus.PAID),
    ],
)
def test_fee_status_thresholds(total_fee: int, total_paid: int, expected: FeeStatus) -> None:
    assert fee_status(total_fee, total_paid) is expected


def test_recompute_derives_all_fields() -> None:
    figures = recompute(
        LedgerInputs(
            class_fee_total=500000,
            class_fee_discount=50000,
            class_fee_paid=100000,
            bus_fee_total=60000,
            bus_fee_paid=60000,
        )
    )
    assert figures.class_fee_discounted_total == 450000
    assert figures.class_fee_pending == 350000
    assert figures.bus_fee_pending == 0
    assert figures.total_fee == 510000
    assert figures.total_fee_paid == 160000
    assert figures.fee_status is FeeStatus.PARTIAL
    assert figures.overpaid == 0


def test_recompute_is_idempotent() -> None:
    first = recompute(LedgerInputs(class_fee_total=500000, class_fee_discount=1000, class_fee_paid=2500, bus_fee_total=60000))
    second = recompute(first.inputs)
    assert first == second


def test_recompute_surfaces_overpayment_without_clamping_paid() -> None:
    figures = recompute(LedgerInputs(class_fee_total=100000, class_fee_discount=20000, class_fee_paid=90000))
    assert figures.class_fee_paid == 90000
    assert figures.class_fee_pending == 0
    assert figures.overpaid == 10000
    assert figures.fee_status is FeeStatus.PAID


def test_scenario_a_class_settled_bus_untouched() -> None:
    a = allocate(500000, PaymentType.BOTH, CLASS_5000, BUS_600, has_bus=True)
    assert (a.class_fee_credit, a.bus_fee_credit, a.excess) == (500000, 0, 0)


def test_scenario_b_both_settled() -> None:
    a = allocate(560000, PaymentType.BOTH, CLASS_5000, BUS_600, has_bus=True)
    assert (a.class_fee_credit, a.bus_fee_credit, a.excess) == (500000, 60000, 0)


def test_scenario_c_excess_reported() -> None:
    a = allocate(600000, PaymentType.BOTH, CLASS_5000, BUS_600, has_bus=True)
    assert (a.class_fee_credit, a.bus_fee_credit, a.excess) == (500000, 60000, 40000)


@pytest.mark.parametrize("amount", [1, 250000, 500000, 530000, 560000, 560001, 900000])
@pytest.mark.parametrize("class_pending,bus_pending", [(500000, 60000), (0, 60000), (500000, 0), (0, 0)])
def test_both_allocation_conserves_money(amount: int, class_pending: int, bus_pending: int) -> None:
    a = allocate(amount, PaymentType.BOTH, class_pending, bus_pending, has_bus=True)
    assert a.allocated == min(amount, class_pending + bus_pending)
    assert a.excess == max(0, amount - (class_pending + bus_pending))
    assert a.allocated + a.excess == amount


def test_class_payment_never_touches_bus() -> None:
    a = allocate(700000, PaymentType.CLASS, CLASS_5000, BUS_600, has_bus=True)
    assert (a.class_fee_credit, a.bus_fee_credit, a.excess) == (500000, 0, 200000)


def test_bus_payment_without_transport_is_all_excess() -> None:
    a = allocate(10000, PaymentType.BUS, CLASS_5000, BUS_600, has_bus=False)
    assert (a.class_fee_credit, a.bus_fee_credit, a.excess) == (0, 0, 10000)


def test_both_payment_without_transport_fills_class_only() -> None:
    a = allocate(550000, PaymentType.BOTH, CLASS_5000, BUS_600, has_bus=False)
    assert (a.class_fee_credit, a.bus_fee_credit, a.excess) == (500000, 0, 50000)


def test_other_payment_is_not_allocated() -> None:
    a = allocate(12345, PaymentType.OTHER, CLASS_5000, BUS_600, has_bus=True)
    assert (a.class_fee_credit, a.bus_fee_credit, a.excess) == (0, 0, 0)


def test_money_conversion() -> None:
    from decimal import Decimal

    assert to_minor(Decimal("5000")) == 500000
    assert to_minor(Decimal("0.10")) == 10
    assert str(from_minor(40000)) == "400.00"
    assert has_sub_minor_precision(Decimal("1.005"))
    assert not has_sub_minor_precision(Decimal("1.50"))
