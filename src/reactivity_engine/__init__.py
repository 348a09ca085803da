"""Artist metric aggregation and song reactivity scoring."""

from .config import AppConfig, ConfigurationError, load_config
from .errors import ReactivityEngineError, UpstreamFailure
from .records import ReactivityGrade, ReactivityResult, Region
from .service import ArtistMetrics, LinkReport, ReactivityEngine

__all__ = [
    "AppConfig",
    "ArtistMetrics",
    "ConfigurationError",
    "LinkReport",
    "ReactivityEngine",
    "ReactivityEngineError",
    "ReactivityGrade",
    "ReactivityResult",
    "Region",
    "UpstreamFailure",
    "load_config",
]
