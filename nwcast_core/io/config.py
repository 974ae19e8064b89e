from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from nwcast_core.domain.errors import ValidationError
from nwcast_core.domain.models import (
    DEFAULT_EMERGENCY_FUND_MONTHS,
    Common,
    Configuration,
    Event,
    Investment,
    Loan,
    LoggingConfig,
    OptimizerConfig,
    Scenario,
)

OUTPUT_FORMATS = ("pretty", "csv", "json")


def load_configuration(path: str | Path) -> Configuration:
    """Read a YAML (``.yaml``/``.yml``) or JSON configuration file."""
    path = Path(path)
    if path.suffix.lower() in (".yaml", ".yml"):
        data = _read_yaml(path)
    else:
        data = _read_json(path)
    return parse_configuration(data)


def parse_configuration(data: Optional[Dict[str, Any]]) -> Configuration:
    data = _mapping(data or {}, "configuration")

    recommendations = _mapping(data.get("recommendations") or {}, "recommendations")
    logging_data = _mapping(data.get("logging") or {}, "logging")
    output = _mapping(data.get("output") or {}, "output")

    output_format = _str(output, "format", "output", "pretty").lower()
    if output_format not in OUTPUT_FORMATS:
        raise ValidationError(f"output.format: unsupported format {output_format!r}")

    common_data = _mapping(data.get("common"), "common")
    scenarios = [
        _scenario(item, f"scenarios[{i}]") for i, item in enumerate(_list(data, "scenarios", "configuration"))
    ]

    return Configuration(
        common=_common(common_data, "common"),
        scenarios=scenarios,
        start_date=_str(data, "startDate", "configuration") or None,
        emergency_fund_months=_float(
            recommendations, "emergencyFundMonths", "recommendations", DEFAULT_EMERGENCY_FUND_MONTHS
        ),
        logging=LoggingConfig(
            level=_str(logging_data, "level", "logging", "info").lower(),
            format=_str(logging_data, "format", "logging", "console").lower(),
            output_file=_str(logging_data, "outputFile", "logging"),
        ),
        output_format=output_format,
    )


def _common(data: Dict[str, Any], path: str) -> Common:
    death_date = _str(data, "deathDate", path)
    if not death_date:
        raise ValidationError(f"{path}.deathDate is required")
    return Common(
        starting_value=_float(data, "startingValue", path),
        death_date=death_date,
        events=_events(data, "events", path),
        loans=_loans(data, path),
        investments=_investments(data, path),
    )


def _scenario(data: Any, path: str) -> Scenario:
    data = _mapping(data, path)
    return Scenario(
        name=_str(data, "name", path),
        active=_bool(data, "active", path, True),
        events=_events(data, "events", path),
        loans=_loans(data, path),
        investments=_investments(data, path),
    )


def _events(data: Dict[str, Any], key: str, path: str) -> List[Event]:
    return [_event(item, f"{path}.{key}[{i}]") for i, item in enumerate(_list(data, key, path))]


def _event(data: Any, path: str) -> Event:
    data = _mapping(data, path)
    if data.get("stockSymbol"):
        raise ValidationError(f"{path}: stock-priced events are not supported")
    frequency = _int(data, "frequency", path)
    optimizer = data.get("optimizer")
    return Event(
        name=_str(data, "name", path),
        amount=_float(data, "amount", path),
        percentage=_float(data, "percentage", path),
        frequency=frequency if frequency != 0 else 1,
        start_date=_str(data, "startDate", path) or None,
        end_date=_str(data, "endDate", path) or None,
        optimizer=_optimizer(optimizer, f"{path}.optimizer") if optimizer is not None else None,
    )


def _optimizer(data: Any, path: str) -> OptimizerConfig:
    data = _mapping(data, path)
    return OptimizerConfig(
        field=_str(data, "field", path),
        kind=_str(data, "kind", path),
        target=_str(data, "target", path),
        min=_optional_float(data, "min", path),
        max=_optional_float(data, "max", path),
        min_date=_str(data, "minDate", path),
        max_date=_str(data, "maxDate", path),
        tolerance=_float(data, "tolerance", path),
        max_iterations=_int(data, "maxIterations", path),
    )


def _loans(data: Dict[str, Any], path: str) -> List[Loan]:
    loans: List[Loan] = []
    for i, item in enumerate(_list(data, "loans", path)):
        item_path = f"{path}.loans[{i}]"
        item = _mapping(item, item_path)
        start_date = _str(item, "startDate", item_path)
        if not start_date:
            raise ValidationError(f"{item_path}.startDate is required")
        loans.append(
            Loan(
                name=_str(item, "name", item_path),
                start_date=start_date,
                principal=_float(item, "principal", item_path),
                interest_rate=_float(item, "interestRate", item_path),
                term=_int(item, "term", item_path),
                down_payment=_float(item, "downPayment", item_path),
                escrow=_float(item, "escrow", item_path),
                mortgage_insurance=_float(item, "mortgageInsurance", item_path),
                mortgage_insurance_cutoff=_float(item, "mortgageInsuranceCutoff", item_path),
                early_payoff_threshold=_float(item, "earlyPayoffThreshold", item_path),
                early_payoff_date=_str(item, "earlyPayoffDate", item_path),
                sell_property=_bool(item, "sellProperty", item_path),
                sell_price=_float(item, "sellPrice", item_path),
                sell_costs_net=_float(item, "sellCostsNet", item_path),
                extra_principal_payments=_events(item, "extraPrincipalPayments", item_path),
            )
        )
    return loans


def _investments(data: Dict[str, Any], path: str) -> List[Investment]:
    investments: List[Investment] = []
    for i, item in enumerate(_list(data, "investments", path)):
        item_path = f"{path}.investments[{i}]"
        item = _mapping(item, item_path)
        from_cash = _bool(item, "contributionsFromCash", item_path) or _bool(
            item, "contributionsReduceIncome", item_path
        )
        investment = Investment(
            name=_str(item, "name", item_path),
            starting_value=_float(item, "startingValue", item_path),
            annual_return_rate=_float(item, "annualReturnRate", item_path),
            tax_rate=_float(item, "taxRate", item_path),
            withdrawal_tax_rate=_float(item, "withdrawalTaxRate", item_path),
            contributions_from_cash=from_cash,
            contributions=_events(item, "contributions", item_path),
            withdrawals=_events(item, "withdrawals", item_path),
        )
        _check_investment_events(investment, item_path)
        investments.append(investment)
    return investments


def _check_investment_events(investment: Investment, path: str) -> None:
    """
    Contributions are fixed amounts only. Each withdrawal is either an amount or a
    percentage, and one account does not mix the two.
    """
    for i, event in enumerate(investment.contributions):
        if event.percentage != 0:
            raise ValidationError(f"{path}.contributions[{i}]: percentage is not supported for contributions")

    kinds = set()
    for i, event in enumerate(investment.withdrawals):
        if event.amount != 0 and event.percentage != 0:
            raise ValidationError(f"{path}.withdrawals[{i}]: specify either amount or percentage, not both")
        if event.amount == 0 and event.percentage == 0:
            raise ValidationError(f"{path}.withdrawals[{i}]: must specify amount or percentage")
        kinds.add("percentage" if event.percentage != 0 else "amount")
    if len(kinds) > 1:
        raise ValidationError(f"{path}: withdrawals cannot mix amount and percentage entries")


# -------------------------------
# Typed accessors
# -------------------------------


def _mapping(value: Any, path: str) -> Dict[str, Any]:
    if not isinstance(value, dict):
        raise ValidationError(f"{path}: expected a mapping")
    return value


def _list(data: Dict[str, Any], key: str, path: str) -> List[Any]:
    value = data.get(key)
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValidationError(f"{path}.{key}: expected a list")
    return value


def _str(data: Dict[str, Any], key: str, path: str, default: str = "") -> str:
    value = data.get(key)
    if value is None:
        return default
    if isinstance(value, bool) or isinstance(value, (list, dict)):
        raise ValidationError(f"{path}.{key}: expected a string")
    return str(value).strip()


def _optional_float(data: Dict[str, Any], key: str, path: str) -> Optional[float]:
    value = data.get(key)
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{path}.{key}: expected a number")
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{path}.{key}: expected a number") from exc


def _float(data: Dict[str, Any], key: str, path: str, default: float = 0.0) -> float:
    value = _optional_float(data, key, path)
    return default if value is None else value


def _int(data: Dict[str, Any], key: str, path: str, default: int = 0) -> int:
    value = _optional_float(data, key, path)
    if value is None:
        return default
    if not value.is_integer():
        raise ValidationError(f"{path}.{key}: expected an integer")
    return int(value)


def _bool(data: Dict[str, Any], key: str, path: str, default: bool = False) -> bool:
    value = data.get(key)
    if value is None:
        return default
    if not isinstance(value, bool):
        raise ValidationError(f"{path}.{key}: expected true or false")
    return value


def _read_yaml(path: str | Path) -> Dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        try:
            return yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ValidationError(f"failed to parse {path}: {exc}") from exc


def _read_json(path: str | Path) -> Dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        try:
            return json.load(f)
        except json.JSONDecodeError as exc:
            raise ValidationError(f"failed to parse {path}: {exc}") from exc
