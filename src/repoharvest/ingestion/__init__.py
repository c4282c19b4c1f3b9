"""
Repository list ingestion.

Reads the CSV file describing which repositories to clone and where.
"""
from .reader import RepoDescriptor, SourceFileError, parse_row, read_repo_descriptors

__all__ = ["RepoDescriptor", "SourceFileError", "parse_row", "read_repo_descriptors"]
