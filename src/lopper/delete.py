"""Deletion of selected branches."""

import logging
import shlex
from dataclasses import dataclass, field
from typing import Iterable

from lopper.branches import Branch
from lopper.git import CommandFailed, CommandGateway, DeletionFailed, GitError

logger = logging.getLogger(__name__)


@dataclass
class DeletionPlan:
    """Selected branches split into the two deletion batches."""

    remote: str
    remote_branches: list[str] = field(default_factory=list)
    local_branches: list[str] = field(default_factory=list)


def plan_deletion(selected: Iterable[Branch], remote: str, include_remotes: bool) -> DeletionPlan:
    """Split selected branches into remote and local deletions.

    Only with ``include_remotes`` are ``<remote>/`` names deleted on the
    remote; otherwise every name is deleted as a local branch.
    """
    plan = DeletionPlan(remote=remote)
    prefix = f"{remote}/"
    for branch in selected:
        if include_remotes and branch.name.startswith(prefix):
            plan.remote_branches.append(branch.name[len(prefix) :])
        else:
            plan.local_branches.append(branch.name)
    return plan


def delete_branches(
    gateway: CommandGateway,
    selected: Iterable[Branch],
    remote: str,
    include_remotes: bool,
) -> list[str]:
    """Delete the selected branches with at most two git commands.

    Remote branches go in one ``push`` and local branches in one
    ``branch -d``. Both batches are attempted even if the first one fails.

    Returns:
        Names of the deleted branches, as they appeared in the selection

    Raises:
        DeletionFailed: If either batch failed, after both were attempted
    """
    plan = plan_deletion(selected, remote, include_remotes)
    deleted: list[str] = []
    failures: dict[str, GitError] = {}

    if plan.remote_branches:
        refspecs = " ".join(f":{shlex.quote(name)}" for name in plan.remote_branches)
        try:
            gateway.run(f"push {shlex.quote(plan.remote)} {refspecs}")
            logger.info("Deleted %d branches on %s", len(plan.remote_branches), plan.remote)
            deleted.extend(f"{plan.remote}/{name}" for name in plan.remote_branches)
        except CommandFailed as err:
            failures["remote"] = err

    if plan.local_branches:
        try:
            gateway.run("branch -d " + shlex.join(plan.local_branches))
            logger.info("Deleted %d local branches", len(plan.local_branches))
            deleted.extend(plan.local_branches)
        except CommandFailed as err:
            failures["local"] = err

    if failures:
        raise DeletionFailed(failures, deleted)
    return deleted
