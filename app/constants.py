"""Application-wide constants and configuration values.

This module centralizes all magic numbers and hardcoded values used throughout
the pronunciation engine, making them easier to maintain and adjust.
"""

# Score Range
MIN_SCORE = 0.0
"""Lowest score the scorer (or any drill) may report."""

MAX_SCORE = 100.0
"""Highest score the scorer (or any drill) may report."""

# Attempt Evaluation
DEFAULT_PASSING_THRESHOLD = 70
"""Default score (0-100) an attempt must reach to count as passed."""

# Bounded History
HISTORY_CAPACITY = 20
"""Maximum entries kept in a word's score history and a learner's confidence history."""

# Mastery Classification
MASTERY_SUCCESS_SCORE = 70
"""Minimum observation score counted as a successful attempt for mastery purposes."""

MASTERED_MIN_AVERAGE = 90
"""Minimum running average required for the MASTERED level."""

MASTERED_MIN_SUCCESSES = 3
"""Minimum successful observations required for the MASTERED level."""

PRACTICING_MIN_AVERAGE = 70
"""Minimum running average for the PRACTICING level."""

LEARNING_MIN_AVERAGE = 50
"""Minimum running average for the LEARNING level. Anything lower is STRUGGLING."""

# Challenge Indicators
CHALLENGING_MIN_ATTEMPTS = 3
"""A unit becomes challenging once attempts exceed this count."""

CHALLENGING_MAX_AVERAGE = 70
"""A unit is challenging while its running average stays below this value."""

HIGH_CHALLENGE_MIN_ATTEMPTS = 5
"""Attempts that must be exceeded for a HIGH challenge level."""

HIGH_CHALLENGE_MAX_AVERAGE = 60
"""Running average below which a heavily attempted unit is a HIGH challenge."""

# Confidence Score
COMPLETION_WEIGHT = 0.4
"""Weight of the completion rate (as a percentage) in the confidence score."""

QUALITY_WEIGHT = 0.6
"""Weight of pronunciation quality in the confidence score."""

TREND_BASELINE_DAYS = 7
"""Age a history entry must reach before it serves as the trend baseline."""

CONFIDENCE_LABEL_BANDS = (
    (95, "Excellent"),
    (88, "Very Good"),
    (82, "Good"),
    (75, "Average"),
    (60, "Developing"),
    (0, "Needs Improvement"),
)
"""(minimum score, label) pairs in descending order. The last band must start at 0."""

# Word Normalization
MAX_CONTEXTS_PER_WORD = 50
"""Distinct example sentences remembered per learner-word pair."""

# Rate Limiting
ATTEMPT_SUBMISSION_RATE_LIMIT = "30/minute"
"""Maximum number of pronunciation attempts accepted per minute per client."""

WORD_SCORE_RATE_LIMIT = "120/minute"
"""Maximum number of word score observations accepted per minute per client."""

DEFAULT_RATE_LIMIT = "100/minute"
"""Default per-IP limit for every other endpoint."""

# Logging
DEFAULT_LOG_LEVEL = "INFO"
"""Default logging level for the application."""
