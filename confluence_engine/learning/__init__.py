"""
Learning package.

Outcome tracking of emitted signals and outcome-driven method weighting.
"""

from .learning_engine import LearningEngine, close_outcome
from .outcome_tracker import OutcomeTracker

__all__ = [
    'LearningEngine',
    'OutcomeTracker',
    'close_outcome',
]
