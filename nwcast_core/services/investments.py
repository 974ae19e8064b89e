from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional, Tuple

from nwcast_core.domain.errors import ValidationError
from nwcast_core.domain.models import DATE_LAYOUT, Investment, InvestmentChange, InvestmentState
from nwcast_core.services.calendar import parse_month

logger = logging.getLogger(__name__)

MONTHS_PER_YEAR = 12


def _pct(value: float) -> float:
    return value / 100.0


def opening_states(investments: Iterable[Optional[Investment]]) -> Dict[str, InvestmentState]:
    return {inv.name: InvestmentState.opening(inv) for inv in investments if inv is not None}


def _reconcile(state: InvestmentState) -> None:
    # principal + growth == current, both non-negative
    state.current_value = max(state.current_value, 0.0)
    state.growth_balance = min(max(state.growth_balance, 0.0), state.current_value)
    state.principal_balance = state.current_value - state.growth_balance


def advance_investment(investment: Investment, state: InvestmentState, month) -> InvestmentChange:
    """Move one account forward one month: contribution, growth, withdrawal, withdrawal tax."""
    previous_value = state.current_value

    contribution = investment.contribution_for(month)
    if contribution != 0:
        state.current_value += contribution
        state.principal_balance = max(state.principal_balance + contribution, 0.0)

    monthly_rate = _pct(investment.annual_return_rate) / MONTHS_PER_YEAR
    growth_before_tax = state.current_value * monthly_rate
    tax = 0.0
    # losses are never taxed
    if growth_before_tax > 0 and investment.tax_rate > 0:
        tax = growth_before_tax * _pct(investment.tax_rate)
    after_tax_growth = growth_before_tax - tax
    if after_tax_growth != 0:
        state.current_value += after_tax_growth
        state.growth_balance += after_tax_growth
        if state.growth_balance < 0:
            deficit = -state.growth_balance
            state.growth_balance = 0.0
            state.principal_balance = max(state.principal_balance - deficit, 0.0)

    withdrawal = investment.withdrawal_for(month)
    withdrawal_percentage = investment.withdrawal_percentage_for(month)
    if withdrawal_percentage != 0:
        withdrawal += state.current_value * _pct(withdrawal_percentage)
    withdrawal = max(min(withdrawal, state.current_value), 0.0)

    from_growth = 0.0
    from_basis = 0.0
    if withdrawal != 0:
        from_growth = min(withdrawal, max(state.growth_balance, 0.0))
        from_basis = withdrawal - from_growth
        state.growth_balance = max(state.growth_balance - from_growth, 0.0)
        state.principal_balance = max(state.principal_balance - from_basis, 0.0)
        state.current_value = max(state.current_value - withdrawal, 0.0)

    withdrawal_tax = 0.0
    if from_growth > 0 and investment.withdrawal_tax_rate > 0:
        withdrawal_tax = from_growth * _pct(investment.withdrawal_tax_rate)

    _reconcile(state)

    return InvestmentChange(
        name=investment.name,
        contribution=contribution,
        withdrawal=withdrawal,
        withdrawal_percentage=withdrawal_percentage,
        withdrawal_tax=withdrawal_tax,
        withdrawal_from_growth=from_growth,
        withdrawal_from_basis=from_basis,
        growth=after_tax_growth,
        growth_before_tax=growth_before_tax,
        tax=tax,
        net_change=state.current_value - previous_value,
        contribution_from_cash=investment.contributions_from_cash,
    )


def process_investments(
    date: str,
    investments: Iterable[Optional[Investment]],
    states: Optional[Dict[str, InvestmentState]] = None,
    layout: str = DATE_LAYOUT,
) -> Tuple[float, List[InvestmentChange]]:
    """
    Advance every account for ``date`` in declaration order.
    Returns the total change in account balances plus one change record per account.
    States missing from ``states`` are opened from the starting value.
    """
    if not layout:
        raise ValidationError("layout cannot be empty")
    if not date:
        raise ValidationError("date cannot be empty")
    month = parse_month(date, layout)

    if states is None:
        states = {}

    total_change = 0.0
    changes: List[InvestmentChange] = []
    for investment in investments:
        if investment is None:
            logger.warning("Skipping empty investment entry on %s", date)
            continue
        state = states.get(investment.name)
        if state is None:
            state = InvestmentState.opening(investment)
            states[investment.name] = state
        change = advance_investment(investment, state, month)
        total_change += change.net_change
        changes.append(change)
    return total_change, changes
