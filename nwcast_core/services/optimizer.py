from __future__ import annotations

import abc
import dataclasses
import datetime as dt
import logging
from typing import Callable, Dict, List, Optional, Tuple

import numpy as np

from nwcast_core.domain.errors import ConfigurationError, ValidationError
from nwcast_core.domain.models import (
    DEFAULT_MAX_ITERATIONS,
    DEFAULT_TOLERANCE_AMOUNT,
    DEFAULT_TOLERANCE_DISCRETE,
    OPTIMIZER_KIND_CASH_FLOOR,
    OPTIMIZER_TARGET_EMERGENCY_FUND,
    Configuration,
    Event,
    Forecast,
    OptimizationSummary,
    OptimizerConfig,
    OptimizerField,
)
from nwcast_core.io.report import format_currency
from nwcast_core.services import forecaster
from nwcast_core.services.calendar import index_to_month, month_index
from nwcast_core.services.forecaster import liquid_series
from nwcast_core.services.loans import round_currency, round_half_away
from nwcast_core.services.preparation import materialize_event, prepare_configuration, resolve_start_month

logger = logging.getLogger(__name__)

EPSILON = 1e-6


# -------------------------------
# Field kinds
# -------------------------------


@dataclasses.dataclass(frozen=True)
class FieldState:
    numeric: float
    display: str


class FieldKind(abc.ABC):
    """Snap, clamp, display and read/write behaviour of one optimizable event field."""

    field: OptimizerField
    reschedules = False
    default_tolerance = DEFAULT_TOLERANCE_DISCRETE

    def snap(self, value: float) -> float:
        return float(max(round_half_away(value), 0))

    @abc.abstractmethod
    def display(self, value: float) -> str:
        raise NotImplementedError

    @abc.abstractmethod
    def bounds(self, cfg: OptimizerConfig) -> Tuple[float, float]:
        raise NotImplementedError

    @abc.abstractmethod
    def read(self, event: Event, conf: Configuration) -> FieldState:
        raise NotImplementedError

    @abc.abstractmethod
    def write(self, event: Event, value: float) -> Tuple[FieldState, Callable[[], None]]:
        """Store ``value`` on the event; returns the applied state and an undo callback."""
        raise NotImplementedError

    def state(self, value: float) -> FieldState:
        snapped = self.snap(value)
        return FieldState(numeric=snapped, display=self.display(snapped))


class AmountField(FieldKind):
    field = OptimizerField.AMOUNT
    default_tolerance = DEFAULT_TOLERANCE_AMOUNT

    def snap(self, value: float) -> float:
        return round_currency(value)

    def display(self, value: float) -> str:
        return format_currency(round_currency(value))

    def bounds(self, cfg: OptimizerConfig) -> Tuple[float, float]:
        if cfg.min is None:
            raise ValidationError("optimizer requires a minimum bound")
        if cfg.max is None:
            raise ValidationError("optimizer requires a maximum bound")
        if cfg.min >= cfg.max:
            raise ValidationError(f"optimizer minimum {cfg.min:.2f} must be less than maximum {cfg.max:.2f}")
        return float(cfg.min), float(cfg.max)

    def read(self, event: Event, conf: Configuration) -> FieldState:
        return self.state(event.amount)

    def write(self, event: Event, value: float) -> Tuple[FieldState, Callable[[], None]]:
        previous = event.amount
        applied = self.state(value)
        event.amount = applied.numeric

        def undo() -> None:
            event.amount = previous

        return applied, undo


class FrequencyField(FieldKind):
    field = OptimizerField.FREQUENCY
    reschedules = True

    def snap(self, value: float) -> float:
        return float(max(round_half_away(value), 1))

    def display(self, value: float) -> str:
        return str(int(self.snap(value)))

    def bounds(self, cfg: OptimizerConfig) -> Tuple[float, float]:
        if cfg.min is None or cfg.max is None:
            raise ValidationError("optimizer requires integer bounds for frequency")
        if cfg.min < 1:
            raise ValidationError(f"optimizer frequency minimum {cfg.min:.0f} must be at least 1")
        if cfg.min >= cfg.max:
            raise ValidationError(f"optimizer frequency minimum {cfg.min:.0f} must be less than maximum {cfg.max:.0f}")
        return float(cfg.min), float(cfg.max)

    def read(self, event: Event, conf: Configuration) -> FieldState:
        if event.frequency <= 0:
            raise ValidationError(f"event {event.name} must have a positive frequency")
        return self.state(event.frequency)

    def write(self, event: Event, value: float) -> Tuple[FieldState, Callable[[], None]]:
        previous = event.frequency
        applied = self.state(value)
        event.frequency = int(applied.numeric)

        def undo() -> None:
            event.frequency = previous

        return applied, undo


class MonthField(FieldKind):
    reschedules = True

    def __init__(self, field: OptimizerField, attribute: str) -> None:
        self.field = field
        self.attribute = attribute

    def display(self, value: float) -> str:
        return index_to_month(int(self.snap(value)))

    def bounds(self, cfg: OptimizerConfig) -> Tuple[float, float]:
        name = self.field.value
        if not cfg.min_date.strip():
            raise ValidationError(f"optimizer {name} requires a minimum date")
        if not cfg.max_date.strip():
            raise ValidationError(f"optimizer {name} requires a maximum date")
        try:
            low = month_index(cfg.min_date)
            high = month_index(cfg.max_date)
        except ValidationError as exc:
            raise ValidationError(f"optimizer {name} bounds are invalid: {exc}") from exc
        if low > high:
            raise ValidationError(
                f"optimizer {name} minimum date {cfg.min_date} must not be after maximum date {cfg.max_date}"
            )
        return float(low), float(high)

    def read(self, event: Event, conf: Configuration) -> FieldState:
        current = getattr(event, self.attribute)
        if not current and self.field is OptimizerField.END_DATE:
            current = conf.common.death_date
        if not current:
            raise ValidationError(f"event {event.name} requires a {self.field.value} to optimize")
        return self.state(month_index(current))

    def write(self, event: Event, value: float) -> Tuple[FieldState, Callable[[], None]]:
        previous = getattr(event, self.attribute)
        applied = self.state(value)
        setattr(event, self.attribute, applied.display)

        def undo() -> None:
            setattr(event, self.attribute, previous)

        return applied, undo


FIELD_KINDS: Dict[OptimizerField, FieldKind] = {
    OptimizerField.AMOUNT: AmountField(),
    OptimizerField.FREQUENCY: FrequencyField(),
    OptimizerField.START_DATE: MonthField(OptimizerField.START_DATE, "start_date"),
    OptimizerField.END_DATE: MonthField(OptimizerField.END_DATE, "end_date"),
}


def normalize_optimizer(cfg: OptimizerConfig) -> OptimizerField:
    """Fill defaults and validate a directive; returns its canonical field."""
    try:
        field = OptimizerField.canonical(cfg.field)
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc
    cfg.field = field.value
    cfg.kind = (cfg.kind or "").strip().lower() or OPTIMIZER_KIND_CASH_FLOOR
    cfg.target = (cfg.target or "").strip() or OPTIMIZER_TARGET_EMERGENCY_FUND
    if cfg.tolerance is None or cfg.tolerance <= 0:
        cfg.tolerance = FIELD_KINDS[field].default_tolerance
    if cfg.max_iterations is None or cfg.max_iterations <= 0:
        cfg.max_iterations = DEFAULT_MAX_ITERATIONS

    if cfg.kind != OPTIMIZER_KIND_CASH_FLOOR:
        raise ValidationError(f"optimizer kind {cfg.kind!r} is not supported")
    if cfg.target != OPTIMIZER_TARGET_EMERGENCY_FUND:
        raise ValidationError(f"optimizer target {cfg.target!r} is not supported")
    FIELD_KINDS[field].bounds(cfg)
    return field


# -------------------------------
# Scoped mutation
# -------------------------------


class FieldMutation:
    """
    Writes one event field for the duration of a ``with`` block.
    On exit the previous value and occurrence list are restored unless ``commit`` was called.
    """

    def __init__(self, runner: "Runner", target: "EventTarget", value: float) -> None:
        self.runner = runner
        self.target = target
        self.value = value
        self.applied: Optional[FieldState] = None
        self._undo: Optional[Callable[[], None]] = None
        self._previous_dates: List[dt.date] = []
        self._committed = False

    def apply(self) -> FieldState:
        event = self.target.event
        self._previous_dates = list(event.date_list)
        self.applied, self._undo = self.target.kind.write(event, self.value)
        if self.target.kind.reschedules:
            try:
                materialize_event(event, self.runner.conf, self.runner.reference)
            except ValidationError:
                self.rollback()
                raise
        return self.applied

    def rollback(self) -> None:
        if self._undo is None:
            return
        self._undo()
        self._undo = None
        self.target.event.date_list = self._previous_dates

    def commit(self) -> FieldState:
        if self.applied is None:
            raise RuntimeError("mutation has not been applied")
        self._committed = True
        self._undo = None
        return self.applied

    def __enter__(self) -> "FieldMutation":
        self.apply()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if not self._committed:
            self.rollback()


# -------------------------------
# Search
# -------------------------------


@dataclasses.dataclass
class EventTarget:
    scenario_name: str
    event: Event
    kind: FieldKind
    min_value: float
    max_value: float
    original: FieldState
    original_amount: float

    @property
    def config(self) -> OptimizerConfig:
        if self.event.optimizer is None:
            raise ValidationError(f"event {self.event.name} has no optimizer directive")
        return self.event.optimizer


@dataclasses.dataclass(frozen=True)
class Evaluation:
    value: float
    display: str
    min_cash: float
    floor: float
    floor_reached: bool

    @property
    def feasible(self) -> bool:
        return self.floor_reached and self.min_cash >= self.floor

    @property
    def headroom(self) -> float:
        return self.min_cash - self.floor


def min_cash_after_floor(forecast: Forecast, floor: float) -> Tuple[float, bool]:
    """Lowest cash balance once the series first reaches ``floor``; False if it never does."""
    series = liquid_series(forecast)
    if not series:
        return 0.0, False
    cash = np.fromiter(series.values(), dtype=float)
    if floor <= 0:
        return float(cash.min()), True
    reached = np.nonzero(cash >= floor)[0]
    if reached.size == 0:
        return 0.0, False
    return float(cash[reached[0]:].min()), True


@dataclasses.dataclass
class Result:
    """Optimizer summaries keyed by scenario name."""

    summaries: Dict[str, List[OptimizationSummary]] = dataclasses.field(default_factory=dict)

    @property
    def empty(self) -> bool:
        return not self.summaries

    def apply(self, forecasts: List[Forecast]) -> None:
        for fc in forecasts:
            fc.metrics.optimizations.extend(self.summaries.get(fc.name, []))


class Runner:
    """Tunes one event field per directive so projected cash stays above the emergency-fund floor."""

    def __init__(self, conf: Optional[Configuration], start: Optional[dt.date] = None) -> None:
        if conf is None:
            raise ConfigurationError("configuration cannot be nil")
        self.conf = conf
        self.reference = resolve_start_month(conf, start)

    def run(self) -> Result:
        targets = self.collect_targets()
        if not targets:
            return Result()

        prepare_configuration(self.conf, self.reference)
        baseline = forecaster.get_forecast(self.conf, self.reference)
        floors = {
            fc.name: fc.metrics.emergency_fund.target_amount
            for fc in baseline
            if fc.metrics.emergency_fund is not None
        }

        result = Result()
        for target in targets:
            floor = floors.get(target.scenario_name)
            if floor is None:
                raise ConfigurationError(f"optimizer: scenario {target.scenario_name} missing emergency fund baseline")
            if floor <= 0:
                raise ConfigurationError(
                    f"optimizer: scenario {target.scenario_name} requires a positive emergency fund target"
                )
            summary = self.optimize(target, floor)
            result.summaries.setdefault(target.scenario_name, []).append(summary)
            logger.info(
                "optimizer adjusted %s.%s %s: %s -> %s (floor %.2f, min cash %.2f, headroom %.2f, %d iterations, converged=%s)",
                target.scenario_name, target.event.name, summary.field,
                summary.original_display, summary.value_display,
                summary.floor, summary.minimum_cash, summary.headroom, summary.iterations, summary.converged,
            )
        return result

    def collect_targets(self) -> List[EventTarget]:
        for event in self.conf.common.events:
            if event.optimizer is not None:
                raise ValidationError(f"optimizer directives on common events are not supported (event {event.name})")

        targets: List[EventTarget] = []
        for scenario in self.conf.active_scenarios:
            for event in scenario.events:
                if event.optimizer is None:
                    continue
                try:
                    field = normalize_optimizer(event.optimizer)
                    kind = FIELD_KINDS[field]
                    low, high = kind.bounds(event.optimizer)
                    original = kind.read(event, self.conf)
                except ValidationError as exc:
                    raise ValidationError(f"scenario {scenario.name} event {event.name}: {exc}") from exc
                targets.append(
                    EventTarget(
                        scenario_name=scenario.name,
                        event=event,
                        kind=kind,
                        min_value=low,
                        max_value=high,
                        original=original,
                        original_amount=event.amount,
                    )
                )
        return targets

    def evaluate(self, target: EventTarget, value: float, floor: float) -> Evaluation:
        value = _clamp(target.kind.snap(value), target.min_value, target.max_value)
        with FieldMutation(self, target, value) as mutation:
            forecasts = forecaster.get_forecast(self.conf, self.reference)
            applied = mutation.applied
        scenario = next((fc for fc in forecasts if fc.name == target.scenario_name), None)
        if scenario is None:
            raise ConfigurationError(f"optimizer: forecast missing scenario {target.scenario_name}")
        min_cash, reached = min_cash_after_floor(scenario, floor)
        return Evaluation(
            value=applied.numeric,
            display=applied.display,
            min_cash=min_cash,
            floor=floor,
            floor_reached=reached,
        )

    def optimize(self, target: EventTarget, floor: float) -> OptimizationSummary:
        lower = self.evaluate(target, target.min_value, floor)
        upper = self.evaluate(target, target.max_value, floor)

        if not lower.feasible and not upper.feasible:
            chosen = lower if lower.headroom > upper.headroom else upper
            return self._finish(target, chosen, floor, iterations=0)
        if lower.feasible and upper.feasible:
            return self._finish(target, self._rank_candidates(target, lower, upper, floor), floor, iterations=0)
        return self._bisect(target, lower, upper, floor)

    def _rank_candidates(self, target: EventTarget, lower: Evaluation, upper: Evaluation, floor: float) -> Evaluation:
        preferred_value = _clamp(target.kind.snap(target.original.numeric), target.min_value, target.max_value)
        preferred = self.evaluate(target, preferred_value, floor)

        field = target.kind.field
        consume = target.original_amount < 0
        prefer_lower = consume and field is not OptimizerField.END_DATE
        prefer_higher = consume and field is OptimizerField.END_DATE
        upper_is_better = upper.headroom >= lower.headroom
        original = target.original.numeric

        def better(candidate: Evaluation, best: Evaluation) -> bool:
            delta = abs(candidate.value - original)
            best_delta = abs(best.value - original)
            lower_value = candidate.value < best.value - EPSILON
            higher_value = candidate.value > best.value + EPSILON
            same_headroom = abs(candidate.headroom - best.headroom) <= EPSILON
            same_delta = abs(delta - best_delta) <= EPSILON

            if consume:
                if candidate.headroom < best.headroom - EPSILON:
                    return True
                if not same_headroom:
                    return False
                if (prefer_lower and lower_value) or (prefer_higher and higher_value):
                    return True
                if (prefer_lower and higher_value) or (prefer_higher and lower_value):
                    return False
                return delta < best_delta - EPSILON

            if candidate.headroom > best.headroom + EPSILON:
                return True
            if not same_headroom:
                return False
            if delta < best_delta - EPSILON:
                return True
            if same_delta:
                return higher_value if upper_is_better else lower_value
            return False

        best: Optional[Evaluation] = None
        for candidate in (preferred, lower, upper):
            if not candidate.feasible:
                continue
            if best is None or better(candidate, best):
                best = candidate
        if best is not None:
            return best
        if consume:
            return upper if upper.headroom <= lower.headroom else lower
        return upper if upper.headroom >= lower.headroom else lower

    def _bisect(self, target: EventTarget, lower: Evaluation, upper: Evaluation, floor: float) -> OptimizationSummary:
        cfg = target.config
        best = lower if lower.feasible else upper
        feasible_side, infeasible_side = (lower.value, upper.value) if lower.feasible else (upper.value, lower.value)

        iterations = 0
        while iterations < cfg.max_iterations and abs(infeasible_side - feasible_side) > cfg.tolerance:
            mid = feasible_side + (infeasible_side - feasible_side) / 2
            trial = self.evaluate(target, mid, floor)
            iterations += 1
            if trial.feasible:
                best = trial
                if trial.value == feasible_side:
                    break
                feasible_side = trial.value
            else:
                if trial.value == infeasible_side:
                    break
                infeasible_side = trial.value
        return self._finish(target, best, floor, iterations)

    def _finish(self, target: EventTarget, chosen: Evaluation, floor: float, iterations: int) -> OptimizationSummary:
        mutation = FieldMutation(self, target, chosen.value)
        mutation.apply()
        applied = mutation.commit()

        notes: List[str] = []
        if not chosen.feasible:
            notes.append(
                f"unable to satisfy minimum cash {format_currency(floor)} within bounds "
                f"{target.kind.display(target.min_value)} to {target.kind.display(target.max_value)}"
            )
        return OptimizationSummary(
            target_name=target.event.name,
            field=target.kind.field.value,
            original=target.original.numeric,
            original_display=target.original.display,
            value=applied.numeric,
            value_display=applied.display,
            floor=floor,
            minimum_cash=chosen.min_cash,
            headroom=chosen.headroom,
            iterations=iterations,
            converged=chosen.feasible,
            notes=notes,
        )


def _clamp(value: float, low: float, high: float) -> float:
    return min(max(value, low), high)
