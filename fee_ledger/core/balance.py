"""
Balance arithmetic for the student fee ledger.

All amounts are integer minor units. Nothing here touches the database: the service layer
loads raw ``total`` / ``discount`` / ``paid`` columns, calls :func:`recompute` and writes the
derived figures back, so the derived columns are never trusted from a previous read.
"""

from dataclasses import asdict, dataclass

from fee_ledger.core.enums import FeeStatus, PaymentType


@dataclass(frozen=True)
class LedgerInputs:
    """Raw, caller-validated amounts a ledger is derived from."""

    class_fee_total: int = 0
    class_fee_discount: int = 0
    class_fee_paid: int = 0
    bus_fee_total: int = 0
    bus_fee_paid: int = 0


@dataclass(frozen=True)
class LedgerFigures:
    class_fee_total: int
    class_fee_discount: int
    class_fee_discounted_total: int
    class_fee_paid: int
    class_fee_pending: int
    bus_fee_total: int
    bus_fee_paid: int
    bus_fee_pending: int
    total_fee: int
    total_fee_paid: int
    fee_status: FeeStatus
    # paid beyond what is owed; reported as-is rather than clamped away
    overpaid: int

    @property
    def inputs(self) -> LedgerInputs:
        return LedgerInputs(
            class_fee_total=self.class_fee_total,
            class_fee_discount=self.class_fee_discount,
            class_fee_paid=self.class_fee_paid,
            bus_fee_total=self.bus_fee_total,
            bus_fee_paid=self.bus_fee_paid,
        )

    def as_dict(self) -> dict:
        data = asdict(self)
        data["fee_status"] = self.fee_status.value
        return data


def discounted_total(total: int, discount: int) -> int:
    return max(0, total - discount)


def pending_balance(owed: int, paid: int) -> int:
    return max(0, owed - paid)


def fee_status(total_fee: int, total_fee_paid: int) -> FeeStatus:
    """Paid once everything owed is covered (including a zero total), Unpaid while nothing is paid."""
    if total_fee_paid >= total_fee:
        return FeeStatus.PAID
    if total_fee_paid <= 0:
        return FeeStatus.UNPAID
    return FeeStatus.PARTIAL


def recompute(inputs: LedgerInputs) -> LedgerFigures:
    """Derive every computed ledger field from raw inputs. Pure and idempotent."""
    class_owed = discounted_total(inputs.class_fee_total, inputs.class_fee_discount)
    total_fee = class_owed + inputs.bus_fee_total
    total_paid = inputs.class_fee_paid + inputs.bus_fee_paid
    return LedgerFigures(
        class_fee_total=inputs.class_fee_total,
        class_fee_discount=inputs.class_fee_discount,
        class_fee_discounted_total=class_owed,
        class_fee_paid=inputs.class_fee_paid,
        class_fee_pending=pending_balance(class_owed, inputs.class_fee_paid),
        bus_fee_total=inputs.bus_fee_total,
        bus_fee_paid=inputs.bus_fee_paid,
        bus_fee_pending=pending_balance(inputs.bus_fee_total, inputs.bus_fee_paid),
        total_fee=total_fee,
        total_fee_paid=total_paid,
        fee_status=fee_status(total_fee, total_paid),
        overpaid=max(0, inputs.class_fee_paid - class_owed) + max(0, inputs.bus_fee_paid - inputs.bus_fee_total),
    )


@dataclass(frozen=True)
class Allocation:
    class_fee_credit: int
    bus_fee_credit: int
    excess: int

    @property
    def allocated(self) -> int:
        return self.class_fee_credit + self.bus_fee_credit


def allocate(
    amount: int,
    payment_type: PaymentType,
    class_fee_pending: int,
    bus_fee_pending: int,
    has_bus: bool,
) -> Allocation:
    """
    Split one payment across the class and bus sub-balances.

    Class fee is credited first, then bus fee (only when the student has a transport
    obligation). For ``both`` the remainder is offered again to whichever balance still has
    room until a pass credits nothing. ``other`` payments are not allocated at all and do not
    count as excess. Whatever cannot be placed is returned as ``excess``.
    """
    if payment_type == PaymentType.OTHER:
        return Allocation(class_fee_credit=0, bus_fee_credit=0, excess=0)

    takes_class = payment_type in (PaymentType.CLASS, PaymentType.BOTH)
    takes_bus = payment_type in (PaymentType.BUS, PaymentType.BOTH) and has_bus

    remaining = amount
    class_room = class_fee_pending
    bus_room = bus_fee_pending
    class_credit = 0
    bus_credit = 0

    while remaining > 0:
        credited = 0
        if takes_class and class_room > 0:
            credit = min(remaining, class_room)
            class_credit += credit
            class_room -= credit
            remaining -= credit
            credited += credit
        if takes_bus and remaining > 0 and bus_room > 0:
            credit = min(remaining, bus_room)
            bus_credit += credit
            bus_room -= credit
            remaining -= credit
            credited += credit
        if credited == 0 or payment_type != PaymentType.BOTH:
            break

    return Allocation(class_fee_credit=class_credit, bus_fee_credit=bus_credit, excess=remaining)
