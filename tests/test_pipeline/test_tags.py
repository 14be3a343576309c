"""Tests for plugship.pipeline.tags."""

from __future__ import annotations

import pytest

from plugship.exceptions import InvalidUsageError, TagResolutionError
from plugship.pipeline import resolve_tag, validate_tag, version_from_tag


class TestResolveTag:
    def test_from_event_ref(self) -> None:
        assert resolve_tag(event_ref="refs/tags/v1.2.0") == "v1.2.0"

    def test_explicit(self) -> None:
        assert resolve_tag("v1.2.0") == "v1.2.0"

    def test_explicit_wins_over_branch_ref(self) -> None:
        assert resolve_tag("v1.2.0", "refs/heads/main") == "v1.2.0"

    def test_matching_explicit_and_event(self) -> None:
        assert resolve_tag("v1.2.0", "refs/tags/v1.2.0") == "v1.2.0"

    def test_conflict(self) -> None:
        with pytest.raises(InvalidUsageError, match="conflicts"):
            resolve_tag("v1.2.0", "refs/tags/v1.3.0")

    def test_branch_ref_only(self) -> None:
        with pytest.raises(TagResolutionError, match="not a tag"):
            resolve_tag(event_ref="refs/heads/main")

    def test_nothing(self) -> None:
        with pytest.raises(TagResolutionError, match="No release tag"):
            resolve_tag()

    def test_exit_code(self) -> None:
        with pytest.raises(TagResolutionError) as exc_info:
            resolve_tag()
        assert exc_info.value.exit_code == 3


class TestValidateTag:
    @pytest.mark.parametrize("tag", ["v1.0.0", "release/2024.01", "v1.0.0-rc.1", "1.0"])
    def test_valid(self, tag: str) -> None:
        assert validate_tag(tag) == tag

    @pytest.mark.parametrize(
        "tag",
        ["", "v1 0", "v1..0", "v1.0.lock", "-v1", "v1/", "v1.", "a/.hidden", "v1:0", "v1@{0}", "@", "x//y"],
    )
    def test_invalid(self, tag: str) -> None:
        with pytest.raises(TagResolutionError, match="Invalid tag"):
            validate_tag(tag)


class TestVersionFromTag:
    @pytest.mark.parametrize(
        ("tag", "version"),
        [("v1.2.3", "1.2.3"), ("V2.0", "2.0"), ("1.2.3", "1.2.3"), ("vnext", "vnext"), ("v", "v")],
    )
    def test_version(self, tag: str, version: str) -> None:
        assert version_from_tag(tag) == version
