"""Tests for ChangeGate: the decision whether a test class runs."""

import pytest

from gantry.core.models import (
    ChangeSet,
    ManualTrigger,
    PullRequestTrigger,
    PushTrigger,
    ScheduleTrigger,
)
from gantry.domain.change_gate import ChangeGate, GatePolicy, should_run
from gantry.domain.path_filters import PathFilterGroup

INTEGER = PathFilterGroup("integer", ("tfhe/src/integer/**",))
GPU = PathFilterGroup("gpu", ("backends/tfhe-cuda-backend/**",))
FILTERS = (INTEGER, GPU)


class TestManual:
    def test_manual_always_runs(self) -> None:
        """Manual runs bypass filters, even when nothing relevant changed."""
        decision = ChangeGate().evaluate(
            ManualTrigger(), ChangeSet.of(["README.md"]), FILTERS
        )
        assert decision.run
        assert decision.reason == "manual invocation"

    def test_manual_filtered_when_not_forced(self) -> None:
        decision = ChangeGate().evaluate(
            ManualTrigger(), ChangeSet.of(["README.md"]), FILTERS, force_on_manual=False
        )
        assert not decision.run


class TestPullRequest:
    def test_approved_label_with_matching_change_runs(self) -> None:
        decision = ChangeGate().evaluate(
            PullRequestTrigger(label="approved", action="labeled"),
            ChangeSet.of(["tfhe/src/integer/a.rs"]),
            FILTERS,
        )
        assert decision.run
        assert decision.matched_groups == ("integer",)

    def test_unapproved_label_never_runs(self) -> None:
        """A PR without the approval label is skipped even if code changed."""
        decision = ChangeGate().evaluate(
            PullRequestTrigger(label="needs-review", action="labeled"),
            ChangeSet.of(["tfhe/src/integer/a.rs"]),
            FILTERS,
        )
        assert not decision.run
        assert "not approved" in decision.reason

    def test_no_label_never_runs(self) -> None:
        decision = ChangeGate().evaluate(
            PullRequestTrigger(label=None, action="synchronize"),
            ChangeSet.of(["tfhe/src/integer/a.rs"]),
            FILTERS,
        )
        assert not decision.run

    def test_approval_label_matches_by_containment(self) -> None:
        gate = ChangeGate(GatePolicy(approval_labels=("approved",)))
        assert gate.should_run(
            PullRequestTrigger(label="gpu-approved", action="labeled"),
            ChangeSet.of(["backends/tfhe-cuda-backend/x.cu"]),
            FILTERS,
        )

    def test_approved_but_unrelated_change_skips(self) -> None:
        decision = ChangeGate().evaluate(
            PullRequestTrigger(label="approved", action="labeled"),
            ChangeSet.of(["README.md"]),
            FILTERS,
        )
        assert not decision.run


class TestPushAndSchedule:
    @pytest.mark.parametrize(
        "event", [PushTrigger(branch="main"), ScheduleTrigger()], ids=["push", "schedule"]
    )
    def test_matching_change_runs(self, event: PushTrigger | ScheduleTrigger) -> None:
        assert should_run(event, ChangeSet.of(["tfhe/src/integer/a.rs"]), FILTERS)

    def test_push_unrelated_change_skips(self) -> None:
        decision = ChangeGate().evaluate(
            PushTrigger(branch="main"), ChangeSet.of(["docs/x.md"]), FILTERS
        )
        assert not decision.run
        assert "match none of integer, gpu" in decision.reason

    def test_no_filters_is_full_run(self) -> None:
        decision = ChangeGate().evaluate(
            PushTrigger(branch="main"), ChangeSet.of(["docs/x.md"]), ()
        )
        assert decision.run
        assert "full run" in decision.reason

    def test_fork_repository_never_runs(self) -> None:
        gate = ChangeGate(GatePolicy(canonical_repository="zama-ai/tfhe-rs"))
        decision = gate.evaluate(
            PushTrigger(branch="main", repository="someone/tfhe-rs"),
            ChangeSet.of(["tfhe/src/integer/a.rs"]),
            FILTERS,
        )
        assert not decision.run

    def test_canonical_repository_runs(self) -> None:
        gate = ChangeGate(GatePolicy(canonical_repository="zama-ai/tfhe-rs"))
        assert gate.should_run(
            ScheduleTrigger(repository="zama-ai/tfhe-rs"),
            ChangeSet.of(["tfhe/src/integer/a.rs"]),
            FILTERS,
        )


class TestFailSafe:
    def test_empty_change_set_runs(self) -> None:
        """An empty change set cannot prove nothing relevant changed."""
        decision = ChangeGate().evaluate(PushTrigger(branch="main"), ChangeSet(), FILTERS)
        assert decision.run
        assert decision.indeterminate

    def test_indeterminate_change_set_runs(self) -> None:
        decision = ChangeGate().evaluate(
            PullRequestTrigger(label="approved", action="labeled"),
            ChangeSet.indeterminate(),
            FILTERS,
        )
        assert decision.run
        assert decision.indeterminate

    def test_indeterminate_does_not_bypass_approval(self) -> None:
        decision = ChangeGate().evaluate(
            PullRequestTrigger(label=None, action="opened"),
            ChangeSet.indeterminate(),
            FILTERS,
        )
        assert not decision.run
