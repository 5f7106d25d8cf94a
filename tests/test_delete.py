"""Tests for deleting selected branches."""

from datetime import datetime, timezone

import pytest

from lopper.branches import Branch
from lopper.delete import delete_branches, plan_deletion
from lopper.git import CommandFailed, DeletionFailed


def make_branches(*names: str) -> list[Branch]:
    """Selected branches with placeholder metadata."""
    when = datetime(2024, 1, 1, tzinfo=timezone.utc)
    return [Branch(name, when, "Jane Doe", "Work", obsolete=True, selected=True) for name in names]


def test_plan_with_remotes() -> None:
    """Test that remote-prefixed names go to the remote batch without their prefix."""
    plan = plan_deletion(make_branches("a", "origin/b", "origin/c"), "origin", include_remotes=True)
    assert plan.local_branches == ["a"]
    assert plan.remote_branches == ["b", "c"]


def test_plan_without_remotes() -> None:
    """Test that without remotes every name is a local deletion, whatever its shape."""
    plan = plan_deletion(make_branches("a", "origin/b", "origin/c"), "origin", include_remotes=False)
    assert plan.local_branches == ["a", "origin/b", "origin/c"]
    assert plan.remote_branches == []


def test_plan_other_remote_is_local() -> None:
    """Test that branches of another remote aren't pushed to the chosen remote."""
    plan = plan_deletion(make_branches("upstream/b"), "origin", include_remotes=True)
    assert plan.local_branches == ["upstream/b"]


def test_delete_issues_one_command_per_batch(make_gateway) -> None:
    """Test that each batch is a single git command."""
    gateway = make_gateway({"push origin :b :c": "", "branch -d a": "Deleted branch a (was 1a2b3c4)."})
    deleted = delete_branches(gateway, make_branches("a", "origin/b", "origin/c"), "origin", include_remotes=True)

    assert gateway.calls == ["push origin :b :c", "branch -d a"]
    assert sorted(deleted) == ["a", "origin/b", "origin/c"]


def test_delete_local_only(make_gateway) -> None:
    """Test that no push happens without remote branches."""
    gateway = make_gateway({"branch -d a origin/b": ""})
    delete_branches(gateway, make_branches("a", "origin/b"), "origin", include_remotes=False)
    assert gateway.calls == ["branch -d a origin/b"]


def test_delete_nothing(make_gateway) -> None:
    """Test that an empty selection runs no commands."""
    gateway = make_gateway({})
    assert delete_branches(gateway, [], "origin", include_remotes=True) == []
    assert gateway.calls == []


def test_remote_failure_still_deletes_local(make_gateway) -> None:
    """Test that a failed push doesn't stop the local batch."""
    gateway = make_gateway(
        {
            "push origin :b": CommandFailed("push origin :b", "remote rejected"),
            "branch -d a": "",
        }
    )
    with pytest.raises(DeletionFailed) as exc_info:
        delete_branches(gateway, make_branches("a", "origin/b"), "origin", include_remotes=True)

    assert gateway.calls == ["push origin :b", "branch -d a"]
    assert set(exc_info.value.failures) == {"remote"}
    assert exc_info.value.deleted == ["a"]


def test_local_failure_is_reported(make_gateway) -> None:
    """Test that an unmerged local branch failure surfaces with the remote outcome."""
    gateway = make_gateway(
        {
            "push origin :b": "",
            "branch -d a": CommandFailed("branch -d a", "error: the branch 'a' is not fully merged"),
        }
    )
    with pytest.raises(DeletionFailed) as exc_info:
        delete_branches(gateway, make_branches("a", "origin/b"), "origin", include_remotes=True)

    assert set(exc_info.value.failures) == {"local"}
    assert exc_info.value.deleted == ["origin/b"]
    assert "not fully merged" in str(exc_info.value)


def test_both_batches_fail(make_gateway) -> None:
    """Test that both failures are reported and nothing counts as deleted."""
    gateway = make_gateway(
        {
            "push origin :b": CommandFailed("push origin :b", "remote rejected"),
            "branch -d a": CommandFailed("branch -d a", "error: the branch 'a' is not fully merged"),
        }
    )
    with pytest.raises(DeletionFailed) as exc_info:
        delete_branches(gateway, make_branches("a", "origin/b"), "origin", include_remotes=True)

    assert gateway.calls == ["push origin :b", "branch -d a"]
    assert set(exc_info.value.failures) == {"remote", "local"}
    assert exc_info.value.deleted == []


def test_names_with_quotes_are_quoted(make_gateway) -> None:
    """Test that branch names with shell quotes reach the gateway as single tokens."""
    gateway = make_gateway(
        {
            """push origin :'it'"'"'s'""": "",
            """branch -d 'don'"'"'t-merge' 'say "hi"'""": "",
        }
    )
    deleted = delete_branches(
        gateway, make_branches("don't-merge", 'say "hi"', "origin/it's"), "origin", include_remotes=True
    )
    assert deleted == ["origin/it's", "don't-merge", 'say "hi"']
