"""Publisher -- distribution branch replacement and release creation."""

from plugship.publish.git import Git, GitCommandError, Snapshot
from plugship.publish.github import ReleaseClient
from plugship.publish.publisher import Publisher, classify_git_error

__all__ = [
    "Git",
    "GitCommandError",
    "Publisher",
    "ReleaseClient",
    "Snapshot",
    "classify_git_error",
]
