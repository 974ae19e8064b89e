from __future__ import annotations

import copy
import dataclasses
import logging
import math
from typing import Dict, Iterable, List, Optional

from nwcast_core.domain.errors import ValidationError
from nwcast_core.domain.models import Event, Loan, Payment
from nwcast_core.services.calendar import offset_month, parse_month

logger = logging.getLogger(__name__)

MONTHS_PER_YEAR = 12


def round_half_away(value: float) -> float:
    """Round to the nearest integer, halves away from zero."""
    return math.copysign(math.floor(abs(value) + 0.5), value)


def round_currency(value: float) -> float:
    return round_half_away(value * 100) / 100


def monthly_payment(principal: float, down_payment: float, annual_rate: float, term_months: int) -> float:
    """Standard annuity payment for the financed amount."""
    financed = principal - down_payment
    if annual_rate == 0:
        return financed / term_months
    rate = annual_rate / (100.0 * MONTHS_PER_YEAR)
    power = (1.0 + rate) ** term_months
    return financed * rate / ((power - 1.0) / power)


def interest_payment(remaining_principal: float, annual_rate: float) -> float:
    return remaining_principal * annual_rate / (100.0 * MONTHS_PER_YEAR)


def extra_principal(events: Iterable[Event], month: str) -> float:
    target = parse_month(month)
    return sum(e.amount for e in events if target in e.date_list)


def _is_month(month: str, number: int) -> bool:
    return parse_month(month).month == number


def _escrow_lump_sums(loan: Loan, schedule: Dict[str, Payment], month: str, death_date: str) -> None:
    # after payoff the yearly escrow is paid in one December payment
    while month < death_date:
        if _is_month(month, 12) and loan.escrow > 0:
            schedule[month] = Payment(payment=loan.escrow * MONTHS_PER_YEAR)
        month = offset_month(month, 1)


def amortization_schedule(loan: Loan, death_date: str) -> Dict[str, Payment]:
    """
    Month-by-month payments for ``loan`` until it matures, is paid off early or the
    death month is reached.
    """
    if loan.term < 1:
        raise ValidationError(f"loan {loan.name}: term must be at least 1 month")

    payment = monthly_payment(loan.principal, loan.down_payment, loan.interest_rate, loan.term)
    financed = loan.principal - loan.down_payment
    schedule: Dict[str, Payment] = {}

    first_extra = extra_principal(loan.extra_principal_payments, loan.start_date)
    first = Payment(
        payment=payment + loan.escrow + loan.down_payment + first_extra,
        interest=interest_payment(financed, loan.interest_rate),
        refundable_escrow=loan.escrow,
    )
    first.principal = payment - first.interest + first_extra
    first.remaining_principal = financed - first.principal
    schedule[loan.start_date] = first

    previous_month = loan.start_date
    current_month = offset_month(previous_month, 1)
    for month_number in range(2, loan.term + 1):
        if current_month >= death_date:
            logger.debug("Loan %s reached death date %s, stopping schedule", loan.name, death_date)
            break

        previous = schedule[previous_month]
        current = Payment()
        current.refundable_escrow = 0.0 if _is_month(current_month, 1) else previous.refundable_escrow + loan.escrow

        if loan.early_payoff_date == current_month:
            if loan.sell_property:
                current.payment = previous.remaining_principal - loan.sell_price + loan.sell_costs_net
                logger.debug(
                    "%s: paying off %s for %.2f and selling for %.2f",
                    current_month, loan.name, previous.remaining_principal, loan.sell_price,
                )
                schedule[current_month] = current
            else:
                current.payment = previous.remaining_principal - current.refundable_escrow
                logger.debug("%s: paying off %s for %.2f", current_month, loan.name, previous.remaining_principal)
                schedule[current_month] = current
                _escrow_lump_sums(loan, schedule, offset_month(current_month, 1), death_date)
            break

        extra = min(extra_principal(loan.extra_principal_payments, current_month), previous.remaining_principal)
        current.payment = payment + loan.escrow + extra
        current.interest = interest_payment(previous.remaining_principal, loan.interest_rate)
        current.principal = payment - current.interest + extra

        matured = month_number == loan.term or round_currency(previous.remaining_principal - current.principal) == 0
        if matured:
            current.remaining_principal = 0.0
            if not _is_month(current_month, 12):
                # escrow refund arrives with the final payment
                current.payment -= current.refundable_escrow + loan.escrow
        else:
            current.remaining_principal = previous.remaining_principal - current.principal

        if loan.mortgage_insurance_cutoff > 0 and loan.principal > 0:
            if current.remaining_principal / loan.principal <= loan.mortgage_insurance_cutoff / 100.0:
                current.payment -= loan.mortgage_insurance
        schedule[current_month] = current

        if matured:
            if month_number != loan.term:
                _escrow_lump_sums(loan, schedule, offset_month(current_month, 1), death_date)
            break

        previous_month = current_month
        current_month = offset_month(current_month, 1)

    return schedule


@dataclasses.dataclass
class LoanRun:
    """Per-forecast copy of a loan whose schedule may be rewritten by an early payoff."""

    loan: Loan
    amortization_schedule: Dict[str, Payment]
    early_payoff_threshold: float

    @property
    def name(self) -> str:
        return self.loan.name

    @classmethod
    def start(cls, loan: Loan) -> "LoanRun":
        return cls(
            loan=loan,
            amortization_schedule=copy.deepcopy(loan.amortization_schedule),
            early_payoff_threshold=loan.early_payoff_threshold,
        )


def start_loan_runs(loans: Iterable[Loan]) -> List[LoanRun]:
    return [LoanRun.start(loan) for loan in loans if loan is not None]


def check_early_payoff(run: LoanRun, month: str, death_date: str, available_cash: float) -> Optional[str]:
    """
    Pay the loan off once cash exceeds the outstanding principal by the threshold.
    Rewrites the run's schedule from ``month`` onward and returns the note, or None.
    """
    loan = run.loan
    if run.early_payoff_threshold <= 0 or not loan.start_date < month:
        return None

    previous_month = offset_month(month, -1)
    previous = run.amortization_schedule.get(previous_month)
    if previous is None or previous.remaining_principal <= 0:
        return None
    if round_currency(available_cash - previous.remaining_principal) < run.early_payoff_threshold:
        return None

    schedule = run.amortization_schedule
    if loan.sell_property:
        schedule[month] = Payment(payment=previous.remaining_principal - loan.sell_price + loan.sell_costs_net)
        note = (
            f"paying off asset {loan.name} for {previous.remaining_principal:.2f} and selling for "
            f"{loan.sell_price:.2f} with {loan.sell_costs_net:.2f} selling costs"
        )
    else:
        refundable = schedule[month].refundable_escrow if month in schedule else 0.0
        schedule[month] = Payment(payment=previous.remaining_principal - refundable)
        note = f"paying off asset {loan.name} for {previous.remaining_principal:.2f}"
    logger.debug("%s: %s", month, note)

    run.early_payoff_threshold = 0.0
    current = month
    while current < death_date:
        current = offset_month(current, 1)
        if _is_month(current, 12) and loan.escrow > 0:
            schedule[current] = Payment(payment=loan.escrow * MONTHS_PER_YEAR)
        else:
            schedule.pop(current, None)
    return note


def maturity_month(loan: Loan) -> str:
    return offset_month(loan.start_date, loan.term)
