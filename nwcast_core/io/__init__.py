from nwcast_core.io.config import load_configuration, parse_configuration  # noqa: F401
from nwcast_core.io.report import (  # noqa: F401
    format_currency,
    forecasts_to_frame,
    forecasts_to_json,
    render_csv,
    render_pretty,
)

__all__ = [
    "load_configuration",
    "parse_configuration",
    "format_currency",
    "forecasts_to_frame",
    "forecasts_to_json",
    "render_csv",
    "render_pretty",
]
