"""Report composition: recommendations and Markdown/JSON/YAML output."""

from flakescope.reporting.recommendations import Recommendation, recommend
from flakescope.reporting.reporter import REPORT_FORMATS, Reporter

__all__ = [
    "REPORT_FORMATS",
    "Recommendation",
    "Reporter",
    "recommend",
]
