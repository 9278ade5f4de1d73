"""
Job runners for the matching feature.
"""

from .matching_job import MatchingJob, MatchingJobMetrics

__all__ = ["MatchingJob", "MatchingJobMetrics"]
