import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from nwcast_core.cli import app
from nwcast_core.core.logging import setup_logging


runner = CliRunner()

FIXTURE = Path(__file__).parent / "data" / "config.yaml"


@pytest.fixture(autouse=True)
def _console_logging():
    # the plain handler binds the runner's stderr, which is closed after invoke
    yield
    setup_logging("warning", "console")


def _config(tmp_path: Path) -> Path:
    config_path = tmp_path / "config.yaml"
    config_path.write_text(FIXTURE.read_text())
    return config_path


def test_cli_forecast_json_with_optimizer(tmp_path: Path):
    config_path = _config(tmp_path)
    out_path = tmp_path / "forecast.json"

    result = runner.invoke(
        app,
        ["forecast", "--config", str(config_path), "--output-format", "json", "--out", str(out_path)],
    )
    assert result.exit_code == 0, result.output
    assert out_path.exists()

    payload = json.loads(out_path.read_text())
    assert [fc["name"] for fc in payload] == ["base"]
    base = payload[0]
    assert base["liquid"]["2025-01"] == 20000
    assert base["metrics"]["emergencyFund"]["target_amount"] == pytest.approx(7100)
    (summary,) = base["metrics"]["optimizations"]
    assert summary["target_name"] == "vacation"
    assert summary["converged"] is True
    assert summary["value"] == pytest.approx(-14900, abs=0.02)


def test_cli_forecast_without_optimizer_csv(tmp_path: Path):
    config_path = _config(tmp_path)
    out_path = tmp_path / "forecast.csv"

    result = runner.invoke(
        app,
        [
            "forecast",
            "--config",
            str(config_path),
            "--output-format",
            "csv",
            "--no-optimize",
            "--start-date",
            "2025-01",
            "--out",
            str(out_path),
        ],
    )
    assert result.exit_code == 0, result.output
    lines = out_path.read_text().splitlines()
    assert lines[0] == "date,liquid (base),total (base),notes (base)"
    assert lines[1].startswith("2025-01,20000.00,25000.00")
    # +400 a month, then the -2000 vacation in June
    assert any(line.startswith("2025-06,20000.00") for line in lines)


def test_cli_forecast_pretty(tmp_path: Path):
    config_path = _config(tmp_path)
    result = runner.invoke(app, ["forecast", "--config", str(config_path), "--emergency-months", "3"])
    assert result.exit_code == 0, result.output
    assert "Results for scenario base" in result.output
    assert "Emergency fund target (3.0 months)" in result.output


def test_cli_validate(tmp_path: Path):
    config_path = _config(tmp_path)
    result = runner.invoke(app, ["validate", "--config", str(config_path)])
    assert result.exit_code == 0, result.output
    assert "Configuration OK: 1 active scenario(s), 0 warning(s)" in result.output


def test_cli_reports_configuration_errors(tmp_path: Path):
    config_path = tmp_path / "broken.yaml"
    config_path.write_text("common:\n  startingValue: 100\nscenarios: []\n")
    result = runner.invoke(app, ["forecast", "--config", str(config_path)])
    assert result.exit_code == 1
