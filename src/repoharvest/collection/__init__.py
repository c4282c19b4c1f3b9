"""
Collection of package folders from finished clones into the output root.
"""
from .collector import CollectionReport, Collector
from .copier import copy_directory
from .manifest import Manifest

__all__ = ["CollectionReport", "Collector", "Manifest", "copy_directory"]
