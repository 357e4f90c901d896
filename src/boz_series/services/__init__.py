"""Services for the continuity engine and its collaborators."""

from .continuity import ContinuityCoordinator, DiscPlan
from .disc_parser import disc_name_pattern, parse_disc_name
from .pattern_learning import PatternLearner
from .state_store import SeriesStateStore

__all__ = [
    "ContinuityCoordinator",
    "DiscPlan",
    "PatternLearner",
    "SeriesStateStore",
    "disc_name_pattern",
    "parse_disc_name",
]
