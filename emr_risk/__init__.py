"""
EMR Diabetes Risk Engine

Scores diabetes risk from EMR health signals, caches current assessments per
patient, and aggregates population statistics for the AI dashboard.
"""

__version__ = "0.1.0"
