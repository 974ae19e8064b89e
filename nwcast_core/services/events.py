from __future__ import annotations

import logging
from typing import Iterable, Optional

from nwcast_core.domain.models import DATE_LAYOUT, Event, Loan
from nwcast_core.services.calendar import parse_month

logger = logging.getLogger(__name__)


def sum_events_for_date(date: str, events: Iterable[Optional[Event]], layout: str = DATE_LAYOUT) -> float:
    """Signed total of every event with an occurrence in ``date``."""
    month = parse_month(date, layout)

    amount = 0.0
    for event in events:
        if event is None:
            logger.warning("Skipping empty event entry on %s", date)
            continue
        if not event.date_list:
            logger.warning("Event %s has no occurrence dates; treating it as inactive", event.name)
            continue
        for occurrence in event.date_list:
            if occurrence == month:
                logger.debug("Event %s active on %s: %.2f", event.name, date, event.amount)
                amount += event.amount
                break
    return amount


def sum_loan_payments(date: str, loans: Iterable[Optional[Loan]]) -> float:
    """Scheduled loan payments for ``date`` as a (non-positive) cash delta."""
    amount = 0.0
    for loan in loans:
        if loan is None:
            logger.warning("Skipping empty loan entry on %s", date)
            continue
        payment = loan.amortization_schedule.get(date)
        if payment is not None:
            logger.debug("Loan %s payment on %s: %.2f", loan.name, date, payment.payment)
            amount -= payment.payment
    return amount
