"""Service layer package.

Exports the analytics service consumed by transport and presentation layers.
"""

from .analytics_service import FleetAnalyticsService, RouteAnalysis

__all__ = ["FleetAnalyticsService", "RouteAnalysis"]
