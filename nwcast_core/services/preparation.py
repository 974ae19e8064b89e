from __future__ import annotations

import datetime as dt
import logging
from typing import Iterable, List, Optional

from nwcast_core.domain.errors import ValidationError
from nwcast_core.domain.models import Configuration, Event, Investment, Loan
from nwcast_core.services.calendar import form_date_list, parse_month
from nwcast_core.services.loans import amortization_schedule

logger = logging.getLogger(__name__)


def resolve_start_month(conf: Configuration, start: Optional[dt.date] = None) -> dt.date:
    """An explicit start wins, then the configured ``startDate``."""
    if start is not None:
        return dt.date(start.year, start.month, 1)
    if conf.start_date:
        return parse_month(conf.start_date)
    raise ValidationError("a start month is required: set startDate or pass one explicitly")


def materialize_event(event: Event, conf: Configuration, reference: dt.date) -> None:
    event.date_list = form_date_list(event, conf.common.death_date, reference)


def _materialize_events(events: Iterable[Event], conf: Configuration, reference: dt.date, path: str) -> None:
    for i, event in enumerate(events):
        try:
            materialize_event(event, conf, reference)
        except ValidationError as exc:
            raise ValidationError(f"{path}[{i}] ({event.name}): {exc}") from exc


def _materialize_investments(investments: List[Investment], conf: Configuration, reference: dt.date, path: str) -> None:
    for i, investment in enumerate(investments):
        _materialize_events(investment.contributions, conf, reference, f"{path}[{i}].contributions")
        _materialize_events(investment.withdrawals, conf, reference, f"{path}[{i}].withdrawals")


def _prepare_loans(loans: List[Loan], conf: Configuration, reference: dt.date, path: str) -> None:
    for i, loan in enumerate(loans):
        _materialize_events(loan.extra_principal_payments, conf, reference, f"{path}[{i}].extraPrincipalPayments")
        if loan.sell_price == 0:
            loan.sell_price = loan.principal
        loan.amortization_schedule = amortization_schedule(loan, conf.common.death_date)
        logger.debug("Loan %s scheduled over %d months", loan.name, len(loan.amortization_schedule))


def prepare_configuration(conf: Configuration, reference: dt.date) -> Configuration:
    """Materialize every occurrence list and loan schedule in place."""
    common = conf.common
    parse_month(common.death_date)

    for s, scenario in enumerate(conf.scenarios):
        path = f"scenarios[{s}]"
        _materialize_events(scenario.events, conf, reference, f"{path}.events")
        _materialize_investments(scenario.investments, conf, reference, f"{path}.investments")
        _prepare_loans(scenario.loans, conf, reference, f"{path}.loans")

    _materialize_events(common.events, conf, reference, "common.events")
    _materialize_investments(common.investments, conf, reference, "common.investments")
    _prepare_loans(common.loans, conf, reference, "common.loans")
    return conf
