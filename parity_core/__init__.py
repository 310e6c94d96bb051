"""Rate-parity core package exposing the reusable workflow."""
from .config import ConfigurationError, RunConfig, create_config, create_config_from_env
from .models import ComparisonRow, DateWindow, DeliveryReport, ListingCandidate, ReferencePriceResult
from .workflow import ParityResult, run_parity_workflow

__all__ = [
    "ComparisonRow",
    "ConfigurationError",
    "DateWindow",
    "DeliveryReport",
    "ListingCandidate",
    "ParityResult",
    "ReferencePriceResult",
    "RunConfig",
    "create_config",
    "create_config_from_env",
    "run_parity_workflow",
]
