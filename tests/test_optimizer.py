from datetime import date

import pytest

from nwcast_core.domain import (
    Common,
    Configuration,
    ConfigurationError,
    Event,
    Forecast,
    OptimizationSummary,
    OptimizerConfig,
    OptimizerField,
    Scenario,
    ValidationError,
)
from nwcast_core.services.optimizer import (
    FIELD_KINDS,
    FieldKind,
    FieldMutation,
    Result,
    Runner,
    min_cash_after_floor,
    normalize_optimizer,
)
from nwcast_core.services.preparation import prepare_configuration

START = date(2025, 1, 1)


def _conf(scenario_events, common_events=(), starting_value=10000.0, **kwargs):
    conf = Configuration(
        common=Common(starting_value=starting_value, death_date="2026-01", events=list(common_events)),
        scenarios=[Scenario(name="base", events=list(scenario_events))],
        **kwargs,
    )
    return prepare_configuration(conf, START)


def _vacation(amount=-3000.0, **optimizer):
    return Event(
        name="vacation",
        amount=amount,
        start_date="2025-06",
        end_date="2025-06",
        optimizer=OptimizerConfig(**optimizer),
    )


def _balanced_budget():
    return [Event(name="salary", amount=1000), Event(name="rent", amount=-1000)]


def test_bisection_finds_largest_affordable_expense(caplog):
    # floor is 6 * 3000 / 12 = 1500, so cash of 10000 allows spending 8500
    vacation = _vacation(min=-12000, max=0)
    conf = _conf([vacation], _balanced_budget())

    with caplog.at_level("INFO"):
        result = Runner(conf, START).run()

    (summary,) = result.summaries["base"]
    assert summary.field == "amount"
    assert summary.floor == pytest.approx(1500)
    assert summary.converged
    assert summary.iterations > 0
    assert summary.value == pytest.approx(-8500, abs=0.02)
    assert summary.value >= -8500
    assert summary.headroom >= 0
    assert summary.original_display == "-$3,000.00"
    assert vacation.amount == summary.value
    assert "optimizer adjusted base.vacation amount" in caplog.text


def test_both_feasible_keeps_highest_income():
    gig = Event(
        name="side gig",
        amount=2000,
        start_date="2025-06",
        end_date="2025-06",
        optimizer=OptimizerConfig(min=0, max=2000),
    )
    conf = _conf([gig], [Event(name="rent", amount=-500)])
    (summary,) = Runner(conf, START).run().summaries["base"]

    assert summary.floor == pytest.approx(3000)
    assert summary.value == pytest.approx(2000)
    assert summary.iterations == 0
    assert summary.converged
    assert gig.amount == pytest.approx(2000)


def test_both_feasible_spends_as_much_as_allowed():
    vacation = _vacation(amount=-2000, min=-3000, max=-1000)
    conf = _conf([vacation], _balanced_budget())
    (summary,) = Runner(conf, START).run().summaries["base"]

    assert summary.converged
    assert summary.value == pytest.approx(-3000)
    assert summary.value_display == "-$3,000.00"


def test_neither_feasible_reports_the_gap():
    gig = Event(
        name="side gig",
        amount=500,
        start_date="2025-06",
        end_date="2025-06",
        optimizer=OptimizerConfig(min=0, max=1000),
    )
    conf = _conf([gig], [Event(name="rent", amount=-500)], starting_value=1000)
    (summary,) = Runner(conf, START).run().summaries["base"]

    assert not summary.converged
    assert summary.iterations == 0
    assert summary.value == pytest.approx(1000)
    assert summary.notes == ["unable to satisfy minimum cash $3,000.00 within bounds $0.00 to $1,000.00"]


def test_end_date_search_settles_on_last_affordable_month():
    subscription = Event(
        name="subscription",
        amount=-1000,
        start_date="2025-02",
        end_date="2025-03",
        optimizer=OptimizerConfig(field="end_date", min_date="2025-02", max_date="2025-12"),
    )
    conf = _conf([subscription])
    (summary,) = Runner(conf, START).run().summaries["base"]

    assert summary.field == "endDate"
    assert summary.floor == pytest.approx(1000)
    assert summary.value_display == "2025-10"
    assert summary.converged
    assert subscription.end_date == "2025-10"
    assert subscription.date_list[-1] == date(2025, 10, 1)


def test_frequency_search_settles_on_most_frequent_affordable_schedule():
    tuition = Event(
        name="tuition",
        amount=-1500,
        optimizer=OptimizerConfig(field="frequency", min=1, max=12),
    )
    conf = _conf([tuition], [Event(name="salary", amount=600)], starting_value=6000)
    (summary,) = Runner(conf, START).run().summaries["base"]

    # monthly tuition averages 1500 a month, so the floor is 9000
    assert summary.field == "frequency"
    assert summary.floor == pytest.approx(9000)
    assert summary.value == 8
    assert summary.value_display == "8"
    assert summary.headroom == pytest.approx(0)
    assert summary.iterations == 4
    assert summary.converged
    assert tuition.frequency == 8
    assert tuition.date_list == [date(2025, 1, 1), date(2025, 9, 1)]


def test_start_date_search_settles_on_earliest_affordable_month():
    rent = Event(
        name="rent",
        amount=-1000,
        start_date="2025-02",
        optimizer=OptimizerConfig(field="startDate", min_date="2025-02", max_date="2025-12"),
    )
    conf = _conf([rent])
    (summary,) = Runner(conf, START).run().summaries["base"]

    assert summary.field == "startDate"
    assert summary.floor == pytest.approx(6000)
    assert summary.value_display == "2025-10"
    assert summary.minimum_cash == pytest.approx(6000)
    assert summary.headroom == pytest.approx(0)
    assert summary.converged
    assert rent.start_date == "2025-10"
    assert rent.date_list[0] == date(2025, 10, 1)


def _roof_repair():
    return [
        Event(name="roof", amount=-6000, start_date="2025-02", end_date="2025-02"),
        Event(name="salary", amount=1000),
    ]


def test_both_feasible_end_date_keeps_the_expense_longest():
    # cash bottoms out at 5000 after the roof whatever the end date
    streaming = Event(
        name="streaming",
        amount=-100,
        start_date="2025-03",
        end_date="2025-06",
        optimizer=OptimizerConfig(field="endDate", min_date="2025-04", max_date="2025-12"),
    )
    conf = _conf([streaming], _roof_repair())
    (summary,) = Runner(conf, START).run().summaries["base"]

    assert summary.floor == pytest.approx(2700)
    assert summary.minimum_cash == pytest.approx(5000)
    assert summary.iterations == 0
    assert summary.converged
    assert summary.value_display == "2025-12"
    assert streaming.end_date == "2025-12"


def test_both_feasible_frequency_pays_most_often():
    streaming = Event(
        name="streaming",
        amount=-100,
        frequency=3,
        start_date="2025-03",
        end_date="2025-12",
        optimizer=OptimizerConfig(field="frequency", min=1, max=6),
    )
    conf = _conf([streaming], _roof_repair())
    (summary,) = Runner(conf, START).run().summaries["base"]

    assert summary.floor == pytest.approx(2700)
    assert summary.iterations == 0
    assert summary.original_display == "3"
    assert summary.value == 1
    assert streaming.frequency == 1
    assert len(streaming.date_list) == 10


def test_mutation_rolls_back_value_and_schedule():
    event = Event(name="gym", amount=-50, optimizer=OptimizerConfig(field="frequency", min=1, max=6))
    conf = _conf([event], [Event(name="rent", amount=-500)])
    runner = Runner(conf, START)
    (target,) = runner.collect_targets()
    snapshot = list(event.date_list)

    with FieldMutation(runner, target, 3) as mutation:
        assert event.frequency == 3
        assert mutation.applied.display == "3"
        assert len(event.date_list) < len(snapshot)

    assert event.frequency == 1
    assert event.date_list == snapshot
    mutation.rollback()
    assert event.date_list == snapshot

    with pytest.raises(RuntimeError):
        with FieldMutation(runner, target, 4):
            raise RuntimeError("forecast failed")
    assert event.frequency == 1
    assert event.date_list == snapshot


def test_commit_keeps_the_new_value():
    event = Event(name="gym", amount=-50, optimizer=OptimizerConfig(field="frequency", min=1, max=6))
    conf = _conf([event], [Event(name="rent", amount=-500)])
    runner = Runner(conf, START)
    (target,) = runner.collect_targets()

    with FieldMutation(runner, target, 2) as mutation:
        mutation.commit()
    assert event.frequency == 2
    assert event.date_list[1] == date(2025, 3, 1)


def test_commit_requires_an_applied_mutation():
    event = Event(name="gym", amount=-50, optimizer=OptimizerConfig(field="frequency", min=1, max=6))
    conf = _conf([event], [Event(name="rent", amount=-500)])
    runner = Runner(conf, START)
    (target,) = runner.collect_targets()

    mutation = FieldMutation(runner, target, 2)
    with pytest.raises(RuntimeError):
        mutation.commit()
    assert event.frequency == 1

    event.optimizer = None
    with pytest.raises(ValidationError, match="no optimizer directive"):
        target.config


def test_field_kind_is_abstract():
    with pytest.raises(TypeError):
        FieldKind()


def test_discrete_fields_round_halves_up():
    frequency = FIELD_KINDS[OptimizerField.FREQUENCY]
    assert frequency.snap(2.5) == 3
    assert frequency.snap(0.4) == 1
    start = FIELD_KINDS[OptimizerField.START_DATE]
    # 2025-09 and 2025-10 as month indexes
    assert start.display(24308.5) == "2025-10"
    assert FIELD_KINDS[OptimizerField.AMOUNT].snap(-0.125) == -0.13


def test_common_event_directives_are_rejected():
    conf = _conf([], [_vacation(min=-5000, max=0)])
    with pytest.raises(ValidationError):
        Runner(conf, START).run()


def test_missing_bound_is_rejected():
    conf = _conf([_vacation(min=-5000)], _balanced_budget())
    with pytest.raises(ValidationError):
        Runner(conf, START).run()


def test_non_positive_floor_is_a_configuration_error():
    gig = Event(name="gig", amount=100, optimizer=OptimizerConfig(min=0, max=200))
    with pytest.raises(ConfigurationError):
        Runner(_conf([gig]), START).run()

    vacation = _vacation(min=-5000, max=0)
    conf = _conf([vacation], _balanced_budget(), emergency_fund_months=0)
    with pytest.raises(ConfigurationError):
        Runner(conf, START).run()


def test_baseline_validation_errors_propagate():
    conf = _conf([_vacation(min=-5000, max=0)], _balanced_budget())
    # death month 2026-01 is not after this start
    with pytest.raises(ValidationError, match="death date"):
        Runner(conf, date(2026, 1, 1)).run()


def test_runner_requires_configuration():
    with pytest.raises(ConfigurationError):
        Runner(None, START)


def test_no_directives_gives_empty_result():
    conf = _conf([Event(name="rent", amount=-100)])
    assert Runner(conf, START).run().empty


def test_normalize_fills_defaults():
    cfg = OptimizerConfig(field="start_date", min_date="2025-01", max_date="2025-06")
    assert normalize_optimizer(cfg) is OptimizerField.START_DATE
    assert cfg.field == "startDate"
    assert cfg.tolerance == 1.0
    assert cfg.max_iterations == 50

    amount = OptimizerConfig(min=0, max=10)
    normalize_optimizer(amount)
    assert amount.tolerance == 0.01


@pytest.mark.parametrize(
    "cfg",
    [
        OptimizerConfig(field="percentage", min=0, max=1),
        OptimizerConfig(kind="max_growth", min=0, max=1),
        OptimizerConfig(target="retirement", min=0, max=1),
        OptimizerConfig(min=5, max=5),
        OptimizerConfig(field="frequency", min=0, max=4),
        OptimizerConfig(field="endDate", min_date="2025-06", max_date="2025-01"),
        OptimizerConfig(field="endDate", min_date="2025-06"),
    ],
)
def test_normalize_rejects_bad_directives(cfg):
    with pytest.raises(ValidationError):
        normalize_optimizer(cfg)


def test_min_cash_after_floor():
    fc = Forecast(name="base", liquid={"2025-03": 300.0, "2025-01": 100.0, "2025-02": 500.0})
    assert min_cash_after_floor(fc, 400) == (300.0, True)
    assert min_cash_after_floor(fc, 1000) == (0.0, False)
    assert min_cash_after_floor(fc, 0) == (100.0, True)


def test_result_apply_attaches_summaries():
    summary = OptimizationSummary(
        target_name="vacation",
        field="amount",
        original=-3000,
        original_display="-$3,000.00",
        value=-2000,
        value_display="-$2,000.00",
        floor=1000,
        minimum_cash=1200,
        headroom=200,
        iterations=4,
        converged=True,
    )
    result = Result(summaries={"base": [summary]})
    forecasts = [Forecast(name="base"), Forecast(name="other")]
    result.apply(forecasts)
    assert forecasts[0].metrics.optimizations == [summary]
    assert forecasts[1].metrics.optimizations == []
