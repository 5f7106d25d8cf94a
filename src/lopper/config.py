"""Settings stored in git config."""

from dataclasses import dataclass
from typing import Optional

from git import Repo

from lopper.git import GitError

SECTION = "lopper"
DEFAULT_DAYS = 30
DEFAULT_REFERENCE = "main"
DEFAULT_REMOTE = "origin"


@dataclass(frozen=True)
class Settings:
    """Defaults for classification runs.

    Read from the ``lopper`` section of git config, so they can be set per
    repository or globally with ``git config``.
    """

    days: int = DEFAULT_DAYS
    reference: str = DEFAULT_REFERENCE
    remote: str = DEFAULT_REMOTE


def load_settings(repo: Repo) -> Settings:
    """Read settings from every git config level, falling back to defaults.

    Raises:
        GitError: If ``lopper.days`` is not a non-negative whole number
    """
    reader = repo.config_reader()
    days = reader.get_value(SECTION, "days", DEFAULT_DAYS)
    if isinstance(days, bool) or not isinstance(days, int) or days < 0:
        raise GitError(f"Invalid {SECTION}.days in git config: {days!r}")
    return Settings(
        days=days,
        reference=str(reader.get_value(SECTION, "reference", DEFAULT_REFERENCE)),
        remote=str(reader.get_value(SECTION, "remote", DEFAULT_REMOTE)),
    )


def save_settings(
    repo: Repo,
    days: Optional[int] = None,
    reference: Optional[str] = None,
    remote: Optional[str] = None,
) -> Settings:
    """Write the given settings to the repository's git config.

    Returns:
        The settings in effect afterwards
    """
    writer = repo.config_writer(config_level="repository")
    try:
        if days is not None:
            writer.set_value(SECTION, "days", days)
        if reference is not None:
            writer.set_value(SECTION, "reference", reference)
        if remote is not None:
            writer.set_value(SECTION, "remote", remote)
    finally:
        writer.release()
    return load_settings(repo)
