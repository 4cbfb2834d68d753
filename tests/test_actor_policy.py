"""Tests for the triggering actor permission policy."""

import pytest

from gantry.domain.actor_policy import check_actor, permission_rank


class TestCheckActor:
    def test_sufficient_permission_allowed(self) -> None:
        assert check_actor("octocat", "admin", "write").allowed

    def test_equal_permission_allowed(self) -> None:
        assert check_actor("octocat", "write", "write").allowed

    def test_insufficient_permission_denied(self) -> None:
        decision = check_actor("octocat", "read", "write")
        assert not decision.allowed
        assert "current permission level is read" in decision.reason

    def test_unknown_actor_denied(self) -> None:
        assert not check_actor("", "admin", "write").allowed

    def test_missing_level_denied(self) -> None:
        assert not check_actor("octocat", None, "write").allowed

    def test_unknown_required_level_rejected(self) -> None:
        with pytest.raises(ValueError):
            check_actor("octocat", "admin", "owner")


def test_permission_rank_is_case_insensitive() -> None:
    assert permission_rank("ADMIN") == permission_rank("admin") == 5
    assert permission_rank("bogus") == 0
