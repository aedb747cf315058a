"""Stateless domain services."""

from symphony.services.failure_analyzer import FailureAnalyzer
from symphony.services.impact_analyzer import LaneKeywordImpactAnalyzer
from symphony.services.lane_resolver import LanePlan, LaneResolver

__all__ = ["FailureAnalyzer", "LaneKeywordImpactAnalyzer", "LanePlan", "LaneResolver"]
