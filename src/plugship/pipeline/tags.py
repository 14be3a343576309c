"""Release tag resolution.

A run is driven by exactly one tag: either supplied explicitly (manual
re-dispatch) or taken from the triggering push event's ref
(``refs/tags/<tag>``). Tag names follow git's ref-name rules.
"""

from __future__ import annotations

import re
from typing import Optional

from plugship.exceptions import InvalidUsageError, TagResolutionError

TAG_REF_PREFIX = "refs/tags/"

_FORBIDDEN_RE = re.compile(r"[\x00-\x20\x7f~^:?*\[\\]")


def validate_tag(tag: str) -> str:
    """Return *tag* if it is a valid git tag name.

    Raises:
        TagResolutionError: If *tag* breaks git's ref-name rules.
    """
    problem: Optional[str] = None
    if not tag:
        problem = "tag is empty"
    elif _FORBIDDEN_RE.search(tag):
        problem = "contains whitespace, a control character or one of ~^:?*[\\"
    elif ".." in tag or "@{" in tag or "//" in tag:
        problem = "contains '..', '@{' or '//'"
    elif tag == "@" or tag.startswith(("-", "/")) or tag.endswith(("/", ".", ".lock")):
        problem = "has an invalid start or end"
    elif any(part.startswith(".") for part in tag.split("/")):
        problem = "has a path component starting with '.'"
    if problem is not None:
        raise TagResolutionError(f"Invalid tag {tag!r}: {problem}")
    return tag


def tag_from_ref(ref: str) -> Optional[str]:
    """Extract the tag name from ``refs/tags/<tag>``; ``None`` for other refs."""
    if ref.startswith(TAG_REF_PREFIX):
        return ref[len(TAG_REF_PREFIX):]
    return None


def resolve_tag(explicit: Optional[str] = None, event_ref: Optional[str] = None) -> str:
    """Pick the single tag that drives this run.

    Args:
        explicit: Operator-supplied tag (``--tag`` / ``PLUGSHIP_TAG``).
        event_ref: Ref of the triggering event (``GITHUB_REF``). Refs that
            are not tags are ignored when an explicit tag is given.

    Raises:
        InvalidUsageError: If both are given and name different tags.
        TagResolutionError: If no tag can be determined or it is invalid.
    """
    event_tag = tag_from_ref(event_ref) if event_ref else None
    if explicit and event_tag and explicit != event_tag:
        raise InvalidUsageError(
            f"Explicit tag {explicit!r} conflicts with event ref {event_ref!r}"
        )
    tag = explicit or event_tag
    if not tag:
        if event_ref:
            raise TagResolutionError(f"Event ref {event_ref!r} is not a tag")
        raise TagResolutionError("No release tag: pass --tag or run from a tag push")
    return validate_tag(tag)


def version_from_tag(tag: str) -> str:
    """``v1.2.3`` -> ``1.2.3``; other tags are returned unchanged."""
    if len(tag) > 1 and tag[0] in "vV" and tag[1].isdigit():
        return tag[1:]
    return tag
