from __future__ import annotations

import json
import logging
from datetime import date
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console

from nwcast_core.core.logging import setup_logging
from nwcast_core.domain.errors import NwcastError
from nwcast_core.domain.models import Configuration, Forecast
from nwcast_core.io import config as config_io
from nwcast_core.io import report
from nwcast_core.services import forecaster, optimizer, preparation, validation
from nwcast_core.services.calendar import parse_month

app = typer.Typer(help="Net-worth forecasting CLI with an emergency-fund optimizer.")

logger = logging.getLogger(__name__)

err_console = Console(stderr=True)


def _current_month() -> date:
    today = date.today()
    return date(today.year, today.month, 1)


def _start_month(conf: Configuration, start_date: Optional[str]) -> date:
    if start_date:
        return parse_month(start_date)
    if conf.start_date:
        return parse_month(conf.start_date)
    return _current_month()


def _load(config: Path, log_level: Optional[str]) -> Configuration:
    conf = config_io.load_configuration(config)
    setup_logging(log_level or conf.logging.level, conf.logging.format, conf.logging.output_file)
    return conf


def _write(out: Optional[Path], text: str) -> None:
    if out:
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_text(text, encoding="utf-8")
        typer.echo(f"Forecast written to {out}")
    else:
        typer.echo(text, nl=False)


def _render(forecasts: List[Forecast], output_format: str, out: Optional[Path]) -> None:
    if output_format == "csv":
        _write(out, report.render_csv(forecasts))
    elif output_format == "json":
        _write(out, json.dumps(report.forecasts_to_json(forecasts), indent=2) + "\n")
    elif out:
        out.parent.mkdir(parents=True, exist_ok=True)
        with out.open("w", encoding="utf-8") as f:
            report.render_pretty(forecasts, Console(file=f, width=160))
        typer.echo(f"Forecast written to {out}")
    else:
        report.render_pretty(forecasts)


def _fail(exc: Exception) -> None:
    err_console.print(f"[red]Error:[/red] {exc}")
    raise typer.Exit(code=1)


@app.command()
def forecast(
    config: Path = typer.Option(..., exists=True, dir_okay=False, help="YAML or JSON configuration"),
    output_format: Optional[str] = typer.Option(None, help="Output format: pretty|csv|json"),
    start_date: Optional[str] = typer.Option(None, help="First forecast month (YYYY-MM); defaults to the current month"),
    emergency_months: Optional[float] = typer.Option(None, help="Months of expenses to hold as an emergency fund"),
    optimize: bool = typer.Option(True, help="Apply optimizer directives before forecasting"),
    log_level: Optional[str] = typer.Option(None, help="Override the configured log level"),
    out: Optional[Path] = typer.Option(None, help="Write the report to this path"),
):
    """Project liquid and total net worth for every active scenario."""
    try:
        conf = _load(config, log_level)
        if emergency_months is not None:
            if emergency_months < 0:
                raise typer.BadParameter("must not be negative", param_hint="--emergency-months")
            conf.emergency_fund_months = emergency_months
        fmt = (output_format or conf.output_format).lower()
        if fmt not in config_io.OUTPUT_FORMATS:
            raise typer.BadParameter(f"expected pretty, csv or json, got {fmt}", param_hint="--output-format")

        start = _start_month(conf, start_date)
        validation.configuration_warnings(conf)
        preparation.prepare_configuration(conf, start)

        result = optimizer.Result()
        if optimize and conf.has_optimizer_directives():
            result = optimizer.Runner(conf, start).run()
        forecasts = forecaster.get_forecast(conf, start)
        result.apply(forecasts)
    except (NwcastError, ValueError) as exc:
        _fail(exc)
        return

    logger.debug("Rendering %d scenario(s) as %s", len(forecasts), fmt)
    _render(forecasts, fmt, out)


@app.command()
def validate(
    config: Path = typer.Option(..., exists=True, dir_okay=False, help="YAML or JSON configuration"),
    start_date: Optional[str] = typer.Option(None, help="Reference month (YYYY-MM) for open-ended events"),
):
    """Load and prepare a configuration, printing any warnings."""
    try:
        conf = _load(config, None)
        start = _start_month(conf, start_date)
        warnings = validation.configuration_warnings(conf)
        preparation.prepare_configuration(conf, start)
        if conf.has_optimizer_directives():
            optimizer.Runner(conf, start).collect_targets()
    except NwcastError as exc:
        _fail(exc)
        return

    for message in warnings:
        typer.echo(f"warning: {message}")
    active = len(conf.active_scenarios)
    typer.echo(f"Configuration OK: {active} active scenario(s), {len(warnings)} warning(s)")


if __name__ == "__main__":
    app()
