"""Contribution Visualizer: GitHub contribution aggregation for a fixed set of contributors."""

from .aggregator import ContributionAggregator, fetch_contributions, clear_contributions_cache
from .config import Settings
from .models import ContributionSet, ContributorSummary

__all__ = [
    "ContributionAggregator", "fetch_contributions", "clear_contributions_cache",
    "Settings", "ContributionSet", "ContributorSummary",
]
