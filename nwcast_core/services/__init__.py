from nwcast_core.services.events import sum_events_for_date, sum_loan_payments  # noqa: F401
from nwcast_core.services.forecaster import emergency_fund_recommendation, get_forecast  # noqa: F401
from nwcast_core.services.investments import process_investments  # noqa: F401
from nwcast_core.services.optimizer import Result, Runner  # noqa: F401
from nwcast_core.services.preparation import prepare_configuration, resolve_start_month  # noqa: F401
from nwcast_core.services.validation import configuration_warnings  # noqa: F401

__all__ = [
    "sum_events_for_date",
    "sum_loan_payments",
    "process_investments",
    "get_forecast",
    "emergency_fund_recommendation",
    "Runner",
    "Result",
    "prepare_configuration",
    "resolve_start_month",
    "configuration_warnings",
]
