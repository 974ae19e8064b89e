from __future__ import annotations

import dataclasses
from typing import Any, Dict, List, Optional

import pandas as pd
from rich.console import Console
from rich.table import Table

from nwcast_core.domain.models import EmergencyFundRecommendation, Forecast, OptimizationSummary

FRAME_COLUMNS = ["scenario", "date", "liquid", "total", "notes"]


def format_currency(amount: float) -> str:
    """Dollar sign with thousands separators, e.g. ``-$1,234.56``."""
    text = f"{abs(amount):,.2f}"
    return f"-${text}" if amount < 0 else f"${text}"


def _all_months(forecasts: List[Forecast]) -> List[str]:
    months = set()
    for fc in forecasts:
        months.update(fc.data)
    return sorted(months)


def forecasts_to_frame(forecasts: List[Forecast]) -> pd.DataFrame:
    """Long table: one row per scenario and month."""
    rows = []
    for fc in forecasts:
        for month in fc.months():
            rows.append(
                {
                    "scenario": fc.name,
                    "date": month,
                    "liquid": fc.liquid.get(month),
                    "total": fc.data[month],
                    "notes": "; ".join(fc.notes.get(month, [])),
                }
            )
    return pd.DataFrame(rows, columns=FRAME_COLUMNS)


def render_csv(forecasts: List[Forecast]) -> str:
    """
    Wide CSV with a ``date`` column and liquid/total/notes columns per scenario.
    Months missing from a scenario are left blank.
    """
    frame = pd.DataFrame({"date": _all_months(forecasts)})
    for fc in forecasts:
        frame[f"liquid ({fc.name})"] = [_money(fc.liquid.get(m)) for m in frame["date"]]
        frame[f"total ({fc.name})"] = [_money(fc.data.get(m)) for m in frame["date"]]
        frame[f"notes ({fc.name})"] = [", ".join(fc.notes.get(m, [])) for m in frame["date"]]
    return frame.to_csv(index=False, lineterminator="\n")


def _money(value: Optional[float]) -> str:
    return "" if value is None else f"{value:.2f}"


def forecasts_to_json(forecasts: List[Forecast]) -> List[Dict[str, Any]]:
    payload = []
    for fc in forecasts:
        metrics: Dict[str, Any] = {}
        if fc.metrics.emergency_fund is not None:
            metrics["emergencyFund"] = dataclasses.asdict(fc.metrics.emergency_fund)
        if fc.metrics.optimizations:
            metrics["optimizations"] = [dataclasses.asdict(s) for s in fc.metrics.optimizations]
        payload.append(
            {
                "name": fc.name,
                "liquid": {m: fc.liquid[m] for m in sorted(fc.liquid)},
                "data": {m: fc.data[m] for m in fc.months()},
                "notes": {m: fc.notes[m] for m in sorted(fc.notes)},
                "metrics": metrics,
            }
        )
    return payload


def emergency_fund_line(ef: EmergencyFundRecommendation) -> str:
    line = f"Emergency fund target ({ef.target_months:.1f} months): {format_currency(ef.target_amount)}"
    line += f" | Avg monthly expenses: {format_currency(ef.average_monthly_expenses)}"
    if ef.funded_months > 0:
        line += f" | Starting coverage: {ef.funded_months:.1f} months"
    if ef.shortfall > 0:
        line += f" | Shortfall: {format_currency(ef.shortfall)}"
    elif ef.surplus > 0:
        line += f" | Surplus: {format_currency(ef.surplus)}"
    return line


def optimization_line(summary: OptimizationSummary) -> str:
    status = "converged" if summary.converged else "not converged"
    return (
        f" - {summary.target_name} ({summary.field}): {summary.original_display} -> {summary.value_display}"
        f" | floor {format_currency(summary.floor)} | min cash {format_currency(summary.minimum_cash)}"
        f" | headroom {format_currency(summary.headroom)} | iterations {summary.iterations} ({status})"
    )


def render_pretty(forecasts: List[Forecast], console: Optional[Console] = None) -> None:
    console = console or Console()
    if not forecasts:
        console.print("No forecast results to display.")
        return

    months = _all_months(forecasts)
    for fc in forecasts:
        console.print(f"[bold cyan]--- Results for scenario {fc.name} ---[/bold cyan]")
        if fc.metrics.emergency_fund is not None:
            console.print(emergency_fund_line(fc.metrics.emergency_fund))
        if fc.metrics.optimizations:
            console.print("Optimization adjustments:")
            for summary in fc.metrics.optimizations:
                console.print(optimization_line(summary), style=None if summary.converged else "yellow")
                if summary.notes:
                    console.print(f"   Notes: {'; '.join(summary.notes)}")

        table = Table(show_header=True, header_style="bold")
        table.add_column("Date")
        table.add_column("Liquid Net Worth", justify="right")
        table.add_column("Total Net Worth", justify="right")
        table.add_column("Notes", overflow="fold")
        for month in months:
            liquid = fc.liquid.get(month)
            total = fc.data.get(month)
            table.add_row(
                month,
                format_currency(liquid) if liquid is not None else "-",
                format_currency(total) if total is not None else "-",
                ", ".join(fc.notes.get(month, [])),
            )
        console.print(table)
        console.print()
