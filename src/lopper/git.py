"""Git command gateway and error types."""

import logging
import shlex
from abc import ABC, abstractmethod
from pathlib import Path

from git import GitCommandError, InvalidGitRepositoryError, NoSuchPathError, Repo

logger = logging.getLogger(__name__)


class GitError(Exception):
    """Git operation error."""


class CommandFailed(GitError):
    """A git command exited with an error or produced unusable output."""

    def __init__(self, command: str, message: str) -> None:
        """Initialize error.

        Args:
            command: The command line that failed, without the leading ``git``
            message: What went wrong, usually git's stderr
        """
        super().__init__(f"git {command} failed: {message}")
        self.command = command


class ProbeFailed(GitError):
    """The tentative merge probe could not decide whether a merge is empty."""


class InvalidPolicy(GitError, ValueError):
    """Unknown merge relation."""


class DeletionFailed(GitError):
    """At least one deletion batch failed."""

    def __init__(self, failures: dict[str, GitError], deleted: list[str]) -> None:
        """Initialize error.

        Args:
            failures: Error per failed batch, keyed by ``"local"`` or ``"remote"``
            deleted: Names of branches whose batch succeeded
        """
        batches = ", ".join(f"{batch}: {err}" for batch, err in failures.items())
        super().__init__(f"Failed to delete branches ({batches})")
        self.failures = failures
        self.deleted = deleted


class Cancelled(Exception):
    """A classification run was cancelled.

    Not a ``GitError``: cancellation is a normal way for a run to end.
    """


class CommandGateway(ABC):
    """Runs git commands and returns their raw output.

    Implementations must be safe to call from several threads at once.
    """

    @abstractmethod
    def run(self, command: str) -> str:
        """Run ``git <command>`` and return stdout.

        Raises:
            CommandFailed: If the command exits with an error
        """
        ...


class GitRepo(CommandGateway):
    """Command gateway backed by a GitPython repository."""

    def __init__(self, path: Path) -> None:
        """Initialize repository."""
        try:
            self.repo: Repo = Repo(path)
            if self.repo.bare:
                raise GitError("Cannot operate on bare repository")
        except (GitCommandError, ValueError, InvalidGitRepositoryError, NoSuchPathError) as err:
            raise GitError(f"Failed to open repository: {err}") from err

    def run(self, command: str) -> str:
        """Run a git command in the repository's working tree."""
        logger.debug("git %s", command)
        try:
            args = shlex.split(command)
        except ValueError as err:
            raise CommandFailed(command, f"cannot parse command line: {err}") from err
        try:
            # Each call spawns its own git process, so concurrent calls don't share state
            return self.repo.git.execute(["git", *args])
        except GitCommandError as err:
            message = err.stderr.strip() if isinstance(err.stderr, str) else str(err)
            raise CommandFailed(command, message or f"exit status {err.status}") from err
