from __future__ import annotations

import datetime as dt
import logging
from typing import Dict, List, Optional

import numpy as np

from nwcast_core.domain.errors import ValidationError
from nwcast_core.domain.models import (
    Configuration,
    EmergencyFundRecommendation,
    Forecast,
    InvestmentChange,
    Scenario,
)
from nwcast_core.services.calendar import add_months, format_month, parse_month
from nwcast_core.services.events import sum_events_for_date, sum_loan_payments
from nwcast_core.services.investments import opening_states, process_investments
from nwcast_core.services.loans import check_early_payoff, start_loan_runs
from nwcast_core.services.preparation import resolve_start_month

logger = logging.getLogger(__name__)


def get_forecast(conf: Configuration, start: Optional[dt.date] = None) -> List[Forecast]:
    """
    Deterministic month-by-month projection of every active scenario.
    - Liquid tracks cash only; total adds every investment balance.
    - The run starts at ``start`` (or the configured startDate) and stops at the death month.
    """
    start_month = resolve_start_month(conf, start)
    death_month = parse_month(conf.common.death_date)
    if death_month <= start_month:
        raise ValidationError(
            f"death date {conf.common.death_date} must be after the start month {format_month(start_month)}"
        )

    results: List[Forecast] = []
    for scenario in conf.scenarios:
        if not scenario.active:
            logger.debug("Skipping inactive scenario %s", scenario.name)
            continue
        results.append(_forecast_scenario(conf, scenario, start_month, death_month))
    return results


def _forecast_scenario(conf: Configuration, scenario: Scenario, start_month: dt.date, death_month: dt.date) -> Forecast:
    common = conf.common
    death_date = format_month(death_month)
    result = Forecast(name=scenario.name)

    scenario_loans = start_loan_runs(scenario.loans)
    common_loans = start_loan_runs(common.loans)
    scenario_states = opening_states(scenario.investments)
    common_states = opening_states(common.investments)

    cash = common.starting_value
    scenario_invested = sum(inv.starting_value for inv in scenario.investments if inv is not None)
    common_invested = sum(inv.starting_value for inv in common.investments if inv is not None)

    start_key = format_month(start_month)
    result.liquid[start_key] = cash
    result.data[start_key] = cash + scenario_invested + common_invested

    monthly_expenses: List[float] = []
    month = start_month
    while month < death_month:
        month = add_months(month, 1)
        key = format_month(month)

        scenario_events = sum_events_for_date(key, scenario.events)
        common_events = sum_events_for_date(key, common.events)

        scenario_growth, scenario_changes = process_investments(key, scenario.investments, scenario_states)
        common_growth, common_changes = process_investments(key, common.investments, common_states)
        changes = scenario_changes + common_changes
        cash_contributions = _cash_funded_contributions(changes)
        withdrawal_cash = sum(change.net_cash_received for change in changes)

        _add_investment_notes(result, key, "scenario", scenario_changes)
        _add_investment_notes(result, key, "common", common_changes)

        projected_cash = cash + scenario_events + common_events - cash_contributions + withdrawal_cash
        for run in scenario_loans + common_loans:
            note = check_early_payoff(run, key, death_date, projected_cash)
            if note:
                result.add_note(key, note)

        scenario_payments = sum_loan_payments(key, scenario_loans)
        common_payments = sum_loan_payments(key, common_loans)

        cash += scenario_events + common_events + scenario_payments + common_payments
        cash += withdrawal_cash - cash_contributions

        outflows = [scenario_events, common_events, scenario_payments, common_payments]
        monthly_expenses.append(sum(-x for x in outflows if x < 0) + max(cash_contributions, 0.0))

        scenario_invested += scenario_growth
        common_invested += common_growth
        result.liquid[key] = cash
        result.data[key] = cash + scenario_invested + common_invested

    if conf.emergency_fund_months > 0:
        result.metrics.emergency_fund = emergency_fund_recommendation(
            conf.emergency_fund_months, monthly_expenses, result.liquid[start_key]
        )
    return result


def _cash_funded_contributions(changes: List[InvestmentChange]) -> float:
    return sum(change.contribution for change in changes if change.contribution_from_cash)


def emergency_fund_recommendation(
    target_months: float, monthly_expenses: List[float], initial_liquid: float
) -> EmergencyFundRecommendation:
    average = float(np.mean(monthly_expenses)) if monthly_expenses else 0.0
    target = average * target_months
    difference = initial_liquid - target
    return EmergencyFundRecommendation(
        target_months=target_months,
        average_monthly_expenses=average,
        target_amount=target,
        initial_liquid=initial_liquid,
        funded_months=initial_liquid / average if average > 0 else 0.0,
        shortfall=-difference if difference < 0 else 0.0,
        surplus=difference if difference >= 0 else 0.0,
    )


def _add_investment_notes(result: Forecast, key: str, scope: str, changes: List[InvestmentChange]) -> None:
    for change in changes:
        parts: List[str] = []
        if change.contribution != 0:
            label = "contribution (reduces cash balance)" if change.contribution_from_cash else "contribution"
            parts.append(f"{label} {change.contribution:+.2f}")
        if change.withdrawal != 0 or change.withdrawal_percentage != 0:
            note = f"withdrawal {change.withdrawal:+.2f}"
            if change.withdrawal_percentage != 0:
                note = f"withdrawal ({change.withdrawal_percentage:.2f}%) {change.withdrawal:+.2f}"
            breakdown = []
            if change.withdrawal_from_basis != 0:
                breakdown.append(f"basis {change.withdrawal_from_basis:+.2f}")
            if change.withdrawal_from_growth != 0:
                breakdown.append(f"growth {change.withdrawal_from_growth:+.2f}")
            if breakdown:
                note = f"{note} ({', '.join(breakdown)})"
            parts.append(note)
        growth = change.growth_before_tax or change.growth
        if growth != 0:
            parts.append(f"growth {growth:+.2f}")
        if change.tax != 0:
            parts.append(f"tax {change.tax:.2f}")
        if change.withdrawal_tax != 0:
            parts.append(f"withdrawal tax {change.withdrawal_tax:.2f}")
        if not parts:
            continue
        label = f"{scope} {change.name}".strip() if change.name else scope or "investment"
        result.add_note(key, f"{label}: {', '.join(parts)}")


def liquid_series(forecast: Forecast) -> Dict[str, float]:
    return {month: forecast.liquid[month] for month in sorted(forecast.liquid)}
