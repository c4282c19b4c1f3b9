"""
Parallel repository cloning and package-folder harvesting.
"""

from .version import __version__

__all__ = ["__version__"]
