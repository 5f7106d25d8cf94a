"""Branch model, merge probe, enumeration and metadata loading."""

import logging
import re
import shlex
import threading
from concurrent.futures import Executor
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Iterable, Optional

from lopper.git import Cancelled, CommandFailed, CommandGateway, InvalidPolicy, ProbeFailed

logger = logging.getLogger(__name__)

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
COMMIT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S %z"
DECORATION = "* \n\r"


class MergeRelation(Enum):
    """Which branches to consider relative to the reference branch."""

    # Merged and unmerged branches alike
    ALL = "all"
    # Only branches fully merged into the reference
    MERGED_ONLY = "merged"
    # Merged branches plus unmerged ones whose changes already exist in the
    # reference (cherry-picked, for example)
    NOTHING_TO_MERGE = "nothing-to-merge"


@dataclass
class Branch:
    """A branch found by a classification run."""

    name: str
    last_commit: datetime
    author: str
    subject: str
    obsolete: bool
    selected: bool = False


class CancellationToken:
    """Cooperative cancellation signal shared by one classification run."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        """Request cancellation. Calling it again has no effect."""
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise Cancelled()


@dataclass(frozen=True)
class ClassificationRequest:
    """Everything one classification run needs. Never mutated once built."""

    reference_branch: str
    remote: str
    max_age: timedelta
    relation: MergeRelation = MergeRelation.MERGED_ONLY
    include_remotes: bool = False
    pattern: Optional[re.Pattern] = None
    token: CancellationToken = field(default_factory=CancellationToken, compare=False)


class CancellableGateway(CommandGateway):
    """Gateway wrapper that refuses to start commands once a token is cancelled."""

    def __init__(self, gateway: CommandGateway, token: CancellationToken) -> None:
        self.gateway = gateway
        self.token = token

    def run(self, command: str) -> str:
        self.token.raise_if_cancelled()
        return self.gateway.run(command)


def is_empty_merge(gateway: CommandGateway, from_branch: str, to_branch: str) -> bool:
    """Check whether merging ``from_branch`` into ``to_branch`` would change nothing.

    Runs a virtual three-way merge rooted at the branches' merge base. An
    empty result means ``from_branch`` has no changes that ``to_branch``
    doesn't already contain.

    Raises:
        ProbeFailed: If the merge base or the merge tree can't be computed
    """
    try:
        to_ref, from_ref = shlex.quote(to_branch), shlex.quote(from_branch)
        merge_base = gateway.run(f"merge-base {to_ref} {from_ref}").strip()
        if not merge_base:
            raise ProbeFailed(f"No common ancestor for {from_branch} and {to_branch}")
        diff = gateway.run(f"merge-tree {shlex.quote(merge_base)} {to_ref} {from_ref}")
    except CommandFailed as err:
        raise ProbeFailed(f"Cannot probe merge of {from_branch} into {to_branch}: {err}") from err
    return not diff.strip()


def filter_branch_names(lines: Iterable[str], request: ClassificationRequest) -> list[str]:
    """Turn raw ``git branch`` output lines into candidate branch names."""
    remote_prefix = f"{request.remote}/"
    names: list[str] = []
    for line in lines:
        if not line.strip():
            continue
        name = line.strip(DECORATION)
        # Symbolic refs ("origin/HEAD -> origin/main") and detached HEAD markers
        if name == "HEAD" or name.endswith("/HEAD") or " -> " in name or name.startswith("("):
            continue
        if name == request.reference_branch:
            continue
        if request.include_remotes:
            if not name.startswith(remote_prefix) or name == remote_prefix + request.reference_branch:
                continue
        if request.pattern is not None and not request.pattern.search(name):
            continue
        if name not in names:
            names.append(name)
    return names


def _branch_command(request: ClassificationRequest, merge_flag: str = "") -> str:
    command = "branch"
    if request.include_remotes:
        command += " -r"
    if merge_flag:
        command += f" {merge_flag} {shlex.quote(request.reference_branch)}"
    return command


def _keep_if_empty_merge(gateway: CommandGateway, name: str, reference_branch: str) -> bool:
    try:
        return is_empty_merge(gateway, name, reference_branch)
    except ProbeFailed as err:
        # Keep the branch out of the candidates rather than offer it for deletion
        logger.warning("%s", err)
        return False


def list_candidates(gateway: CommandGateway, request: ClassificationRequest, executor: Executor) -> list[str]:
    """List branch names matching the request's merge relation and name filters.

    Raises:
        CommandFailed: If listing branches fails
        InvalidPolicy: If the merge relation is unknown
    """

    def branch_lines(merge_flag: str = "") -> list[str]:
        return gateway.run(_branch_command(request, merge_flag)).splitlines()

    if request.relation == MergeRelation.ALL:
        return filter_branch_names(branch_lines(), request)
    if request.relation == MergeRelation.MERGED_ONLY:
        return filter_branch_names(branch_lines("--merged"), request)
    if request.relation == MergeRelation.NOTHING_TO_MERGE:
        merged = filter_branch_names(branch_lines("--merged"), request)
        unmerged = filter_branch_names(branch_lines("--no-merged"), request)
        futures = {
            name: executor.submit(_keep_if_empty_merge, gateway, name, request.reference_branch) for name in unmerged
        }
        empty_unmerged = [name for name, future in futures.items() if future.result()]
        logger.debug("%d of %d unmerged branches have nothing to merge", len(empty_unmerged), len(unmerged))
        return merged + [name for name in empty_unmerged if name not in merged]
    raise InvalidPolicy(f"Unknown merge relation: {request.relation!r}")


def parse_commit_date(value: str) -> datetime:
    """Parse a ``%ci`` date, falling back to the Unix epoch.

    The fallback makes a branch with unreadable metadata look obsolete.
    """
    try:
        return datetime.strptime(value.strip(), COMMIT_DATE_FORMAT)
    except ValueError:
        return EPOCH


def load_branch(gateway: CommandGateway, name: str, max_age: timedelta, now: datetime) -> Branch:
    """Load the tip commit's date, author and subject for a branch."""
    ref = shlex.quote(name)
    try:
        output = gateway.run(f"log -1 --pretty=format:%ci%n%an%n%s {ref}^1..{ref}")
    except CommandFailed as err:
        logger.warning("Cannot read last commit of %s: %s", name, err)
        output = ""
    lines = output.split("\n")
    last_commit = parse_commit_date(lines[0])
    author = lines[1] if len(lines) > 1 else ""
    subject = lines[2] if len(lines) > 2 else ""
    return Branch(
        name=name,
        last_commit=last_commit,
        author=author,
        subject=subject,
        obsolete=last_commit < now - max_age,
    )
