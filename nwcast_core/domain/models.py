from __future__ import annotations

import dataclasses
import datetime as dt
import enum
from typing import Dict, List, Optional

DATE_LAYOUT = "%Y-%m"

DEFAULT_EMERGENCY_FUND_MONTHS = 6.0
DEFAULT_TOLERANCE_AMOUNT = 0.01
DEFAULT_TOLERANCE_DISCRETE = 1.0
DEFAULT_MAX_ITERATIONS = 50

OPTIMIZER_KIND_CASH_FLOOR = "cash_floor"
OPTIMIZER_TARGET_EMERGENCY_FUND = "emergencyFund"


class OptimizerField(str, enum.Enum):
    AMOUNT = "amount"
    FREQUENCY = "frequency"
    START_DATE = "startDate"
    END_DATE = "endDate"

    @classmethod
    def canonical(cls, value: Optional[str]) -> "OptimizerField":
        """Resolve user spellings such as ``start_date`` or ``End-Date``."""
        text = (value or "").strip().lower().replace("_", "").replace("-", "")
        if not text:
            return cls.AMOUNT
        for member in cls:
            if member.value.lower() == text:
                return member
        raise ValueError(f"optimizer field {value!r} is not supported")


@dataclasses.dataclass
class OptimizerConfig:
    field: str = OptimizerField.AMOUNT.value
    kind: str = OPTIMIZER_KIND_CASH_FLOOR
    target: str = OPTIMIZER_TARGET_EMERGENCY_FUND
    min: Optional[float] = None
    max: Optional[float] = None
    min_date: str = ""
    max_date: str = ""
    tolerance: float = 0.0
    max_iterations: int = 0


@dataclasses.dataclass
class Event:
    name: str
    amount: float = 0.0
    frequency: int = 1  # months
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    percentage: float = 0.0
    optimizer: Optional[OptimizerConfig] = None
    date_list: List[dt.date] = dataclasses.field(default_factory=list)


@dataclasses.dataclass
class Payment:
    payment: float = 0.0
    principal: float = 0.0
    interest: float = 0.0
    remaining_principal: float = 0.0
    refundable_escrow: float = 0.0


@dataclasses.dataclass
class Loan:
    name: str
    start_date: str
    principal: float
    interest_rate: float
    term: int  # months
    down_payment: float = 0.0
    escrow: float = 0.0
    mortgage_insurance: float = 0.0
    mortgage_insurance_cutoff: float = 0.0
    early_payoff_threshold: float = 0.0
    early_payoff_date: str = ""
    sell_property: bool = False
    sell_price: float = 0.0
    sell_costs_net: float = 0.0
    extra_principal_payments: List[Event] = dataclasses.field(default_factory=list)
    amortization_schedule: Dict[str, Payment] = dataclasses.field(default_factory=dict)


@dataclasses.dataclass
class Investment:
    name: str
    starting_value: float = 0.0
    annual_return_rate: float = 0.0
    tax_rate: float = 0.0
    withdrawal_tax_rate: float = 0.0
    contributions_from_cash: bool = False
    contributions: List[Event] = dataclasses.field(default_factory=list)
    withdrawals: List[Event] = dataclasses.field(default_factory=list)

    def contribution_for(self, date: dt.date) -> float:
        return sum(e.amount for e in self.contributions if date in e.date_list)

    def withdrawal_for(self, date: dt.date) -> float:
        return sum(e.amount for e in self.withdrawals if e.percentage == 0 and date in e.date_list)

    def withdrawal_percentage_for(self, date: dt.date) -> float:
        return sum(e.percentage for e in self.withdrawals if e.percentage != 0 and date in e.date_list)


@dataclasses.dataclass
class InvestmentState:
    current_value: float
    principal_balance: float
    growth_balance: float = 0.0

    @classmethod
    def opening(cls, investment: Investment) -> "InvestmentState":
        return cls(
            current_value=investment.starting_value,
            principal_balance=investment.starting_value,
        )


@dataclasses.dataclass
class InvestmentChange:
    name: str
    contribution: float = 0.0
    withdrawal: float = 0.0
    withdrawal_percentage: float = 0.0
    withdrawal_tax: float = 0.0
    withdrawal_from_growth: float = 0.0
    withdrawal_from_basis: float = 0.0
    growth: float = 0.0
    growth_before_tax: float = 0.0
    tax: float = 0.0
    net_change: float = 0.0
    contribution_from_cash: bool = False

    @property
    def net_cash_received(self) -> float:
        return self.withdrawal - self.withdrawal_tax


@dataclasses.dataclass
class Common:
    starting_value: float
    death_date: str
    events: List[Event] = dataclasses.field(default_factory=list)
    loans: List[Loan] = dataclasses.field(default_factory=list)
    investments: List[Investment] = dataclasses.field(default_factory=list)


@dataclasses.dataclass
class Scenario:
    name: str
    active: bool = True
    events: List[Event] = dataclasses.field(default_factory=list)
    loans: List[Loan] = dataclasses.field(default_factory=list)
    investments: List[Investment] = dataclasses.field(default_factory=list)


@dataclasses.dataclass(frozen=True)
class LoggingConfig:
    level: str = "info"
    format: str = "console"
    output_file: str = ""


@dataclasses.dataclass
class Configuration:
    common: Common
    scenarios: List[Scenario] = dataclasses.field(default_factory=list)
    start_date: Optional[str] = None
    emergency_fund_months: float = DEFAULT_EMERGENCY_FUND_MONTHS
    logging: LoggingConfig = dataclasses.field(default_factory=LoggingConfig)
    output_format: str = "pretty"

    @property
    def active_scenarios(self) -> List[Scenario]:
        return [s for s in self.scenarios if s.active]

    def has_optimizer_directives(self) -> bool:
        events = list(self.common.events)
        for scenario in self.active_scenarios:
            events.extend(scenario.events)
        return any(e.optimizer is not None for e in events)


@dataclasses.dataclass
class EmergencyFundRecommendation:
    target_months: float
    average_monthly_expenses: float
    target_amount: float
    initial_liquid: float
    funded_months: float
    shortfall: float = 0.0
    surplus: float = 0.0


@dataclasses.dataclass
class OptimizationSummary:
    target_name: str
    field: str
    original: float
    original_display: str
    value: float
    value_display: str
    floor: float
    minimum_cash: float
    headroom: float
    iterations: int
    converged: bool
    scope: str = "scenario"
    notes: List[str] = dataclasses.field(default_factory=list)


@dataclasses.dataclass
class ForecastMetrics:
    emergency_fund: Optional[EmergencyFundRecommendation] = None
    optimizations: List[OptimizationSummary] = dataclasses.field(default_factory=list)


@dataclasses.dataclass
class Forecast:
    name: str
    data: Dict[str, float] = dataclasses.field(default_factory=dict)
    liquid: Dict[str, float] = dataclasses.field(default_factory=dict)
    notes: Dict[str, List[str]] = dataclasses.field(default_factory=dict)
    metrics: ForecastMetrics = dataclasses.field(default_factory=ForecastMetrics)

    def months(self) -> List[str]:
        return sorted(self.data)

    def add_note(self, month: str, note: str) -> None:
        self.notes.setdefault(month, []).append(note)
