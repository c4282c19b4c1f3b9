"""
Repository cloning.

Fresh clones, optional branch selection and rewinding to a cutoff date.
"""
from .worker import CloneError, CloneResult, CloneWorker, clone_environment, find_commit_before

__all__ = ["CloneError", "CloneResult", "CloneWorker", "clone_environment", "find_commit_before"]
