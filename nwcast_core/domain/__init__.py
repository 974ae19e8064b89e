from nwcast_core.domain.errors import (  # noqa: F401
    ConfigurationError,
    NwcastError,
    ParseError,
    ValidationError,
)
from nwcast_core.domain.models import (  # noqa: F401
    DATE_LAYOUT,
    Common,
    Configuration,
    EmergencyFundRecommendation,
    Event,
    Forecast,
    ForecastMetrics,
    Investment,
    InvestmentChange,
    InvestmentState,
    Loan,
    LoggingConfig,
    OptimizationSummary,
    OptimizerConfig,
    OptimizerField,
    Payment,
    Scenario,
)

__all__ = [
    "DATE_LAYOUT",
    "Common",
    "Configuration",
    "ConfigurationError",
    "EmergencyFundRecommendation",
    "Event",
    "Forecast",
    "ForecastMetrics",
    "Investment",
    "InvestmentChange",
    "InvestmentState",
    "Loan",
    "LoggingConfig",
    "NwcastError",
    "OptimizationSummary",
    "OptimizerConfig",
    "OptimizerField",
    "ParseError",
    "Payment",
    "Scenario",
    "ValidationError",
]
