"""Test configuration and fixtures."""

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Callable, Generator, Union

import pytest
from git import Actor, Repo

from lopper.git import CommandFailed, CommandGateway

DAY = 24 * 60 * 60

Response = Union[str, Exception, Callable[[], str]]


class FakeGateway(CommandGateway):
    """Gateway answering from a script of command -> response.

    A response is the output text, an exception to raise, or a callable
    producing the output. Unscripted commands fail like git would.
    """

    def __init__(self, responses: dict[str, Response]) -> None:
        self.responses = responses
        self.calls: list[str] = []
        self._lock = threading.Lock()

    def run(self, command: str) -> str:
        with self._lock:
            self.calls.append(command)
        response = self.responses.get(command)
        if response is None:
            raise CommandFailed(command, "unexpected command")
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response()
        return response

    def calls_starting_with(self, prefix: str) -> list[str]:
        with self._lock:
            return [call for call in self.calls if call.startswith(prefix)]


@pytest.fixture
def make_gateway() -> Callable[[dict[str, Response]], FakeGateway]:
    """Build a scripted fake gateway."""
    return FakeGateway


@pytest.fixture
def executor() -> Generator[ThreadPoolExecutor, None, None]:
    """Worker pool for enumeration probes."""
    with ThreadPoolExecutor(max_workers=4) as pool:
        yield pool


def git_date(days_ago: float) -> str:
    """A date in git's internal format, ``days_ago`` days before now."""
    return f"{int(time.time() - days_ago * DAY)} +0000"


@pytest.fixture
def test_env(tmp_path: Path) -> Generator[tuple[Path, Path], None, None]:
    """Create a test environment with local and remote repositories.

    Branches, all pushed to ``origin``:
    - ``feature/old-merged``: last commit 40 days ago, merged into main
    - ``feature/fresh``: last commit 2 days ago, not merged
    - ``feature/picked``: last commit 50 days ago, not merged but cherry-picked into main

    Returns:
        Tuple of (local_repo_path, remote_repo_path)
    """
    remote_path = tmp_path / "remote"
    local_path = tmp_path / "local"
    remote_path.mkdir()
    local_path.mkdir()

    Repo.init(remote_path, bare=True)
    local_repo = Repo.init(local_path)
    # Name the unborn branch main regardless of init.defaultBranch
    local_repo.git.symbolic_ref("HEAD", "refs/heads/main")

    author = Actor("Test User", "test@example.com")
    with local_repo.config_writer() as writer:
        writer.set_value("user", "name", author.name)
        writer.set_value("user", "email", author.email)

    def commit_file(name: str, content: str, message: str, days_ago: float) -> None:
        path = local_path / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
        local_repo.index.add([name])
        date = git_date(days_ago)
        local_repo.index.commit(message, author=author, committer=author, author_date=date, commit_date=date)

    commit_file("README.md", "# Test Repository", "Initial commit", days_ago=60)
    main_branch = local_repo.heads.main
    origin = local_repo.create_remote("origin", url=str(remote_path))

    def create_branch(name: str, days_ago: float) -> None:
        main_branch.checkout()
        local_repo.create_head(name).checkout()
        commit_file(f"{name.replace('/', '_')}.txt", f"{name} content", f"Add {name}", days_ago)

    create_branch("feature/old-merged", days_ago=40)
    main_branch.checkout()
    local_repo.git.merge("feature/old-merged", "--no-ff", "-m", "Merge feature/old-merged")

    create_branch("feature/picked", days_ago=50)
    picked = local_repo.heads["feature/picked"].commit.hexsha
    main_branch.checkout()
    local_repo.git.cherry_pick(picked)

    create_branch("feature/fresh", days_ago=2)
    main_branch.checkout()

    origin.push(["main", "feature/old-merged", "feature/picked", "feature/fresh"])
    origin.fetch()

    yield local_path, remote_path

    # Cleanup is handled by pytest's tmp_path fixture
