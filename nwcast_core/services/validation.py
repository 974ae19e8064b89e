from __future__ import annotations

import logging
from typing import Iterable, List

from nwcast_core.domain.models import Configuration, Event, Loan
from nwcast_core.services.calendar import month_index
from nwcast_core.services.loans import maturity_month

logger = logging.getLogger(__name__)


def _event_warnings(events: Iterable[Event], death_date: str) -> List[str]:
    death = month_index(death_date)
    warnings: List[str] = []
    for event in events:
        if event is None:
            continue
        if event.start_date and month_index(event.start_date) >= death:
            warnings.append(
                f"Event '{event.name}' starts at or after death date ({event.start_date} >= {death_date})"
            )
        if event.end_date and month_index(event.end_date) > death:
            warnings.append(f"Event '{event.name}' ends after death date ({event.end_date} > {death_date})")
    return warnings


def _loan_warnings(loans: Iterable[Loan], death_date: str) -> List[str]:
    death = month_index(death_date)
    warnings: List[str] = []
    for loan in loans:
        if loan is None or not loan.start_date or loan.term < 1:
            continue
        maturity = maturity_month(loan)
        if month_index(maturity) > death:
            warnings.append(
                f"Loan '{loan.name}' matures after death date ({maturity} > {death_date}) "
                "- loan will have outstanding balance"
            )
    return warnings


def configuration_warnings(conf: Configuration) -> List[str]:
    """
    Non-fatal problems with dates relative to the death month.
    Inactive scenarios are not inspected.
    """
    death_date = conf.common.death_date
    events = list(conf.common.events)
    loans = list(conf.common.loans)
    for scenario in conf.active_scenarios:
        events.extend(scenario.events)
        loans.extend(scenario.loans)

    warnings = _event_warnings(events, death_date) + _loan_warnings(loans, death_date)
    for message in warnings:
        logger.warning(message)
    return warnings
