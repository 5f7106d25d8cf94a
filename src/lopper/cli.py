"""Command line interface for lopper."""

import logging
import re
from datetime import timedelta
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich import print
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from lopper.branches import EPOCH, Branch, MergeRelation
from lopper.classify import Classifier
from lopper.config import Settings, load_settings, save_settings
from lopper.delete import delete_branches, plan_deletion
from lopper.git import Cancelled, DeletionFailed, GitError, GitRepo

app = typer.Typer(help="Find and delete obsolete git branches")
console = Console()
logger = logging.getLogger(__name__)

PathOption = Annotated[Path, typer.Option(help="Path to git repository")]
ReferenceOption = Annotated[
    Optional[str],
    typer.Option("--reference", "-r", envvar="LOPPER_REFERENCE", help="Branch that others are compared against"),
]
DaysOption = Annotated[
    Optional[int],
    typer.Option("--days", "-d", min=0, envvar="LOPPER_DAYS", help="Branches older than this are obsolete"),
]
RemoteOption = Annotated[Optional[str], typer.Option(envvar="LOPPER_REMOTE", help="Remote for remote branches")]
RemotesOption = Annotated[bool, typer.Option("--remotes", help="Look at remote branches instead of local ones")]
RelationOption = Annotated[MergeRelation, typer.Option(help="Which branches to consider")]
FilterOption = Annotated[Optional[str], typer.Option("--filter", help="Only branches matching this regular expression")]
VerboseOption = Annotated[bool, typer.Option("--verbose", "-v", help="Show debug logging")]

TABLE_TITLES = {
    MergeRelation.ALL: "Branches other than '{reference}'",
    MergeRelation.MERGED_ONLY: "Branches merged into '{reference}'",
    MergeRelation.NOTHING_TO_MERGE: "Branches with nothing to merge into '{reference}'",
}


def configure_logging(verbose: bool) -> None:
    """Route log records through rich."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def get_repo(path: Path) -> GitRepo:
    """Get git repository instance."""
    try:
        return GitRepo(path)
    except GitError as err:
        print(f"[red]Error:[/red] {err}")
        raise typer.Exit(code=1) from err


def get_settings(repo: GitRepo) -> Settings:
    """Get settings from git config."""
    try:
        return load_settings(repo.repo)
    except GitError as err:
        print(f"[red]Error:[/red] {err}")
        raise typer.Exit(code=1) from err


def find_branches(
    repo: GitRepo,
    reference: str,
    remote: str,
    days: int,
    relation: MergeRelation,
    remotes: bool,
    pattern: Optional[str],
) -> list[Branch]:
    """Run a classification and wait for it, cancelling on Ctrl+C."""
    classifier = Classifier(repo)
    try:
        future = classifier.refresh(
            reference_branch=reference,
            remote=remote,
            max_age=timedelta(days=days),
            relation=relation,
            include_remotes=remotes,
            pattern=pattern,
        )
        with console.status("Searching branches..."):
            try:
                branches = future.result()
            except KeyboardInterrupt:
                classifier.cancel()
                raise
    except Cancelled:
        print("\n[yellow]Search cancelled[/yellow]")
        raise typer.Exit(code=1) from None
    except re.error as err:
        print(f"[red]Error:[/red] Invalid filter: {err}")
        raise typer.Exit(code=1) from err
    except GitError as err:
        print(f"[red]Error:[/red] {err}")
        raise typer.Exit(code=1) from err
    finally:
        classifier.close()
    logger.debug("Found %d branches", len(branches))
    # Newest first
    return sorted(branches, key=lambda branch: (branch.last_commit, branch.name), reverse=True)


def format_commit_date(branch: Branch) -> str:
    """Format the last commit date, or a placeholder when it couldn't be read."""
    if branch.last_commit == EPOCH:
        return "[dim]unknown[/dim]"
    return branch.last_commit.strftime("%Y-%m-%d %H:%M")


def create_branch_table(title: str, branches: list[Branch]) -> Table:
    """Create a numbered table of branches."""
    table = Table(
        title=title,
        show_header=True,
        header_style="bold",
        title_style="bold blue",
        show_edge=True,
    )
    table.add_column("#", justify="right", style="dim", no_wrap=True)
    table.add_column("Branch", style="cyan", no_wrap=True)
    table.add_column("Last Commit", style="yellow", no_wrap=True)
    table.add_column("Author", style="magenta")
    table.add_column("Subject")
    table.add_column("Obsolete?", justify="center", no_wrap=True)
    for index, branch in enumerate(branches, start=1):
        table.add_row(
            str(index),
            branch.name,
            format_commit_date(branch),
            branch.author,
            branch.subject,
            "[green]✅[/green]" if branch.obsolete else "[yellow]✋[/yellow]",
        )
    return table


def status_text(branches: list[Branch], days: int) -> str:
    """Summarize how many branches are obsolete."""
    obsolete = sum(1 for branch in branches if branch.obsolete)
    return f"{obsolete}/{len(branches)} branches obsolete (no commits in {days} days)"


def parse_selection(text: str, branches: list[Branch]) -> list[Branch]:
    """Mark branches selected from a reply like ``1,3-5``, ``all`` or ``obsolete``.

    Raises:
        ValueError: If the reply names a row that doesn't exist
    """
    reply = text.strip().lower()
    if reply == "all":
        indexes = set(range(1, len(branches) + 1))
    elif reply == "obsolete":
        indexes = {index for index, branch in enumerate(branches, start=1) if branch.obsolete}
    else:
        indexes = set()
        for part in reply.split(","):
            part = part.strip()
            if not part:
                continue
            if "-" in part:
                start, end = (int(bound) for bound in part.split("-", 1))
                indexes.update(range(start, end + 1))
            else:
                indexes.add(int(part))
        if any(index < 1 or index > len(branches) for index in indexes):
            raise ValueError(f"Pick rows between 1 and {len(branches)}")
    for index, branch in enumerate(branches, start=1):
        branch.selected = index in indexes
    return [branch for branch in branches if branch.selected]


def warn_unmerged(relation: MergeRelation) -> None:
    """Warn that the relation offers branches git doesn't consider merged."""
    if relation != MergeRelation.MERGED_ONLY:
        console.print(
            "[yellow]Deleting unmerged branches will result in dangling commits. Use with caution![/yellow]"
        )


@app.command("list")
def list_branches(
    path: PathOption = Path("."),
    reference: ReferenceOption = None,
    days: DaysOption = None,
    remote: RemoteOption = None,
    remotes: RemotesOption = False,
    relation: RelationOption = MergeRelation.MERGED_ONLY,
    filter: FilterOption = None,
    verbose: VerboseOption = False,
) -> None:
    """List branches that could be deleted, marking obsolete ones."""
    configure_logging(verbose)
    repo = get_repo(path)
    settings = get_settings(repo)
    reference = reference or settings.reference
    days = settings.days if days is None else days
    remote = remote or settings.remote

    branches = find_branches(repo, reference, remote, days, relation, remotes, filter)
    if not branches:
        console.print(
            Panel(
                "[green]Your branches are clean ✨[/green]",
                style="green",
                padding=(0, 2),
                expand=False,
            )
        )
        return

    console.print(create_branch_table(TABLE_TITLES[relation].format(reference=reference), branches))
    console.print(status_text(branches, days))


@app.command()
def clean(
    path: PathOption = Path("."),
    reference: ReferenceOption = None,
    days: DaysOption = None,
    remote: RemoteOption = None,
    remotes: RemotesOption = False,
    relation: RelationOption = MergeRelation.MERGED_ONLY,
    filter: FilterOption = None,
    all_ages: bool = typer.Option(False, "--all-ages", help="Also offer branches that aren't obsolete"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Delete all obsolete branches without prompting"),
    verbose: VerboseOption = False,
) -> None:
    """Pick obsolete branches and delete them."""
    configure_logging(verbose)
    repo = get_repo(path)
    settings = get_settings(repo)
    reference = reference or settings.reference
    days = settings.days if days is None else days
    remote = remote or settings.remote

    warn_unmerged(relation)
    branches = find_branches(repo, reference, remote, days, relation, remotes, filter)
    if not all_ages:
        branches = [branch for branch in branches if branch.obsolete]
    if not branches:
        console.print(
            Panel(
                "[green]Your branches are clean ✨[/green]",
                style="green",
                padding=(0, 2),
                expand=False,
            )
        )
        return

    console.print(create_branch_table("Branches to Delete", branches))

    if yes:
        selected = parse_selection("obsolete", branches)
    else:
        console.print()
        reply = typer.prompt("Select branches to delete (e.g. 1,3-5, 'all', 'obsolete')", default="obsolete")
        try:
            selected = parse_selection(reply, branches)
        except ValueError as err:
            print(f"[red]Error:[/red] Invalid selection: {err}")
            raise typer.Exit(code=1) from err

    if not selected:
        console.print("\n[yellow]No branches selected[/yellow] 🤔")
        return

    plan = plan_deletion(selected, remote, remotes)
    if not yes:
        if not typer.confirm(f"Are you sure to delete {len(selected)} selected branches?"):
            console.print("\n[yellow]Operation cancelled[/yellow] 🛑")
            return
        if plan.remote_branches and not typer.confirm(
            f"DANGEROUS ACTION! Branches will be deleted on the remote '{remote}'. "
            "This can not be undone. Are you sure you want to continue?"
        ):
            console.print("\n[yellow]Operation cancelled[/yellow] 🛑")
            return

    try:
        deleted = delete_branches(repo, selected, remote, remotes)
    except DeletionFailed as err:
        if err.deleted:
            console.print(create_deleted_table(err.deleted))
        for batch, batch_err in err.failures.items():
            print(f"[red]Error:[/red] Failed to delete {batch} branches: {batch_err}")
        raise typer.Exit(code=1) from err

    console.print()
    console.print(create_deleted_table(deleted))


def create_deleted_table(deleted: list[str]) -> Table:
    """Create a table listing deleted branches."""
    table = Table(
        title=f"Successfully deleted {len(deleted)} branch(es) 🧹",
        show_header=True,
        header_style="bold",
        title_style="bold green",
        show_edge=True,
    )
    table.add_column("Branch", style="cyan")
    for branch in sorted(deleted):
        table.add_row(branch)
    return table


@app.command()
def config(
    path: PathOption = Path("."),
    reference: Annotated[Optional[str], typer.Option("--reference", "-r", help="Set the reference branch")] = None,
    days: Annotated[Optional[int], typer.Option("--days", "-d", min=0, help="Set the age threshold")] = None,
    remote: Annotated[Optional[str], typer.Option(help="Set the remote")] = None,
) -> None:
    """Show or change the settings stored in git config."""
    repo = get_repo(path)
    if reference is None and days is None and remote is None:
        settings = get_settings(repo)
    else:
        try:
            settings = save_settings(repo.repo, days=days, reference=reference, remote=remote)
        except GitError as err:
            print(f"[red]Error:[/red] {err}")
            raise typer.Exit(code=1) from err

    table = Table(show_header=True, header_style="bold", show_edge=True)
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="yellow")
    table.add_row("lopper.days", str(settings.days))
    table.add_row("lopper.reference", settings.reference)
    table.add_row("lopper.remote", settings.remote)
    console.print(table)


if __name__ == "__main__":
    app()
