from glucoengine.services.forecast_engine import ForecastEngine
from glucoengine.services.profile_resolver import ConfigurationError, ProfileResolver

__version__ = "0.1.0"

__all__ = ["ConfigurationError", "ForecastEngine", "ProfileResolver", "__version__"]
