"""
Service layer orchestrators for repository harvesting.
"""
from .pipeline import HarvestCallbacks, HarvestPipeline
from .status import HarvestSummary, RepoStatus, StatusBoard

__all__ = ["HarvestCallbacks", "HarvestPipeline", "HarvestSummary", "RepoStatus", "StatusBoard"]
