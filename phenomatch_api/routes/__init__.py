"""
API Routes Package

This package contains route handlers organized by feature:
- analysis.py: Hybrid analysis endpoint
- reports.py: Stored report retrieval
- phenotypes.py: Read-only reference corpus listing
"""

from phenomatch_api.routes.analysis import router as analysis_router
from phenomatch_api.routes.reports import router as reports_router
from phenomatch_api.routes.phenotypes import router as phenotypes_router

__all__ = [
    "analysis_router",
    "reports_router",
    "phenotypes_router",
]
