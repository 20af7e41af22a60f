"""Command-line interface for shelfquest.

Built with Typer for commands and Rich for output.
"""

import logging
from datetime import date
from typing import Optional

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from .config import get_config
from .db import get_db
from .db.schemas import BookCreate, BookStatus, CollectionCreate, QuoteCreate

# Create the main app
app = typer.Typer(
    name="shelfquest",
    help="Reading challenges, streaks and achievement badges.",
    no_args_is_help=True,
)

# Create sub-apps for command groups
book_app = typer.Typer(help="Record books as you read them.")
app.add_typer(book_app, name="book")

quote_app = typer.Typer(help="Save quotes from your books.")
app.add_typer(quote_app, name="quote")

collection_app = typer.Typer(help="Group books into collections.")
app.add_typer(collection_app, name="collection")

challenge_app = typer.Typer(help="Join reading challenges and track progress.")
app.add_typer(challenge_app, name="challenge")

badge_app = typer.Typer(help="Achievement badges.")
app.add_typer(badge_app, name="badge")

streak_app = typer.Typer(help="Reading streaks.")
app.add_typer(streak_app, name="streak")

catalog_app = typer.Typer(help="Maintain the predefined challenge catalog.")
app.add_typer(catalog_app, name="catalog")

# Rich console for pretty output
console = Console()


@app.callback()
def setup(
    user: Optional[str] = typer.Option(None, "--user", "-u", help="Act as this user"),
) -> None:
    """Configure logging and the acting user."""
    config = get_config()
    for error in config.validate():
        print_warning(error)
    if user:
        config.user_id = user

    logging.basicConfig(
        level=config.logging_level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True)],
        force=True,
    )


# ============================================================================
# Helper Functions
# ============================================================================


def print_error(message: str) -> None:
    """Print an error message."""
    console.print(f"[bold red]Error:[/bold red] {message}")


def print_success(message: str) -> None:
    """Print a success message."""
    console.print(f"[bold green]Success:[/bold green] {message}")


def print_warning(message: str) -> None:
    """Print a warning message."""
    console.print(f"[bold yellow]Warning:[/bold yellow] {message}")


def print_info(message: str) -> None:
    """Print an info message."""
    console.print(f"[dim]{message}[/dim]")


def _db():
    return get_db(str(get_config().db_path))


def _user() -> str:
    return get_config().user_id


def _parse_date(value: Optional[str], label: str = "date") -> Optional[date]:
    if value is None:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        print_error(f"Invalid {label} '{value}'. Use YYYY-MM-DD")
        raise typer.Exit(1)


def _find_book(ref: str):
    db = _db()
    book = db.get_book(ref)
    if book and book.user_id == _user():
        return book

    matches = [b for b in db.get_books(_user()) if b.title.lower() == ref.lower()]
    if not matches:
        print_error(f"Book not found: {ref}")
        raise typer.Exit(1)
    if len(matches) > 1:
        print_error(f"Several books are titled '{ref}', use the book ID instead")
        raise typer.Exit(1)
    return matches[0]


def _challenge_manager():
    from .challenges import ChallengeManager

    return ChallengeManager(_db())


def _find_enrollment(manager, ref: str):
    """Resolve an enrollment ID, or the title of a template the user joined."""
    enrollment = manager.get_enrollment(ref)
    if enrollment and enrollment.user_id == _user():
        return enrollment

    template = manager.find_template(ref)
    if template:
        enrollment = manager.get_user_enrollment(_user(), template.id)
        if enrollment:
            return enrollment

    print_error(f"No joined challenge matches: {ref}")
    raise typer.Exit(1)


def _report(result, verb: str) -> None:
    if not result:
        print_error(result.error)
        raise typer.Exit(1)

    enrollment = result.enrollment
    if not result.changed:
        print_info(f"'{enrollment.template.title}' is already {enrollment.state}")
        return

    print_success(f"{verb}: {enrollment.template.title}")
    console.print(
        f"[dim]Progress: {enrollment.progress}/{enrollment.template.target} "
        f"({enrollment.state})[/dim]"
    )
    if result.newly_completed:
        console.print("[bold green]Challenge completed![/bold green]")


def _refresh_after_activity() -> None:
    """Bring challenges and badges up to date after new reading activity."""
    from .badges import BadgeEvaluator

    manager = _challenge_manager()
    for result in manager.refresh_all(_user()):
        if result.newly_completed:
            console.print(
                f"[bold green]Challenge completed:[/bold green] {result.enrollment.template.title}"
            )
    for badge in BadgeEvaluator(_db()).evaluate(_user()):
        console.print(f"[bold magenta]Badge unlocked:[/bold magenta] {badge.icon} {badge.name}")


def _progress_bar(percent: float, width: int = 10) -> str:
    filled = int((percent / 100) * width)
    return "[green]" + "#" * filled + "[/green]" + "-" * (width - filled)


# ============================================================================
# Book Commands
# ============================================================================


@book_app.command("add")
def book_add(
    title: str = typer.Argument(..., help="Book title"),
    author: str = typer.Option(..., "--author", "-a", help="Author"),
    genre: Optional[str] = typer.Option(None, "--genre", "-g", help="Genre, e.g. 'Roman, Policier'"),
    pages: Optional[int] = typer.Option(None, "--pages", "-p", help="Page count"),
    status: str = typer.Option("reading", "--status", "-s", help="reading, completed, wishlist, dnf"),
    started: Optional[str] = typer.Option(None, "--started", help="Start date (YYYY-MM-DD)"),
    finished: Optional[str] = typer.Option(None, "--finished", help="Finish date (YYYY-MM-DD)"),
    review: Optional[str] = typer.Option(None, "--review", "-r", help="Your review"),
) -> None:
    """Add a book."""
    try:
        book_status = BookStatus(status)
    except ValueError:
        print_error(f"Invalid status: {status}")
        console.print(f"[dim]Valid statuses: {', '.join(s.value for s in BookStatus)}[/dim]")
        raise typer.Exit(1)

    date_started = _parse_date(started, "start date")
    date_finished = _parse_date(finished, "finish date")
    if book_status == BookStatus.READING and date_started is None:
        date_started = date.today()
    if book_status == BookStatus.COMPLETED and date_finished is None:
        date_finished = date.today()

    try:
        data = BookCreate(
            title=title,
            author=author,
            genre=genre,
            page_count=pages,
            status=book_status,
            date_started=date_started,
            date_finished=date_finished,
            comments=review,
        )
    except ValidationError as e:
        print_error(str(e.errors()[0]["msg"]))
        raise typer.Exit(1)

    book = _db().create_book(_user(), data)
    print_success(f"Added: {book.title}")
    console.print(f"[dim]ID: {book.id}[/dim]")

    if book.is_completed:
        _refresh_after_activity()


@book_app.command("finish")
def book_finish(
    book: str = typer.Argument(..., help="Book ID or title"),
    on: Optional[str] = typer.Option(None, "--on", help="Finish date (default: today)"),
    review: Optional[str] = typer.Option(None, "--review", "-r", help="Your review"),
) -> None:
    """Mark a book as read."""
    target = _find_book(book)
    finished_on = _parse_date(on, "finish date")

    try:
        updated = _db().finish_book(target.id, finished_on=finished_on, comments=review)
    except ValidationError as e:
        print_error(str(e.errors()[0]["msg"]))
        raise typer.Exit(1)

    print_success(f"Finished: {updated.title} on {updated.date_finished}")
    _refresh_after_activity()


@book_app.command("list")
def book_list(
    status: Optional[str] = typer.Option(None, "--status", "-s", help="Filter by status"),
) -> None:
    """List your books."""
    book_status = None
    if status:
        try:
            book_status = BookStatus(status)
        except ValueError:
            print_error(f"Invalid status: {status}")
            raise typer.Exit(1)

    books = _db().get_books(_user(), status=book_status)
    if not books:
        print_info("No books found.")
        return

    table = Table(title="Books", show_header=True, header_style="bold magenta")
    table.add_column("Title", style="cyan")
    table.add_column("Author")
    table.add_column("Genre")
    table.add_column("Pages", justify="right")
    table.add_column("Status")
    table.add_column("Finished")

    for b in books:
        table.add_row(
            b.title,
            b.author or "-",
            b.genre or "-",
            str(b.page_count) if b.page_count else "-",
            b.status,
            b.date_finished or "-",
        )

    console.print(table)


# ============================================================================
# Quote and Collection Commands
# ============================================================================


@quote_app.command("add")
def quote_add(
    book: str = typer.Argument(..., help="Book ID or title"),
    text: str = typer.Argument(..., help="Quote text"),
    page: Optional[int] = typer.Option(None, "--page", "-p", help="Page number"),
) -> None:
    """Save a quote."""
    target = _find_book(book)
    _db().add_quote(_user(), QuoteCreate(book_id=target.id, text=text, page_number=page))
    print_success(f"Quote saved from {target.title}")
    _refresh_after_activity()


@collection_app.command("create")
def collection_create(
    name: str = typer.Argument(..., help="Collection name"),
    description: Optional[str] = typer.Option(None, "--description", "-d", help="Description"),
) -> None:
    """Create a collection."""
    collection = _db().create_collection(
        _user(), CollectionCreate(name=name, description=description)
    )
    print_success(f"Collection created: {collection.name}")
    console.print(f"[dim]ID: {collection.id}[/dim]")


@collection_app.command("add")
def collection_add(
    collection_id: str = typer.Argument(..., help="Collection ID"),
    book: str = typer.Argument(..., help="Book ID or title"),
) -> None:
    """Add a book to a collection."""
    target = _find_book(book)
    try:
        added = _db().add_book_to_collection(collection_id, target.id)
    except ValueError as e:
        print_error(str(e))
        raise typer.Exit(1)

    if added:
        print_success(f"Added {target.title} to the collection")
        _refresh_after_activity()
    else:
        print_info(f"{target.title} is already in the collection")


# ============================================================================
# Challenge Commands
# ============================================================================


@challenge_app.command("templates")
def challenge_templates() -> None:
    """List challenges you can join."""
    manager = _challenge_manager()
    templates = manager.list_templates(_user())

    if not templates:
        print_info("No challenges available. Run 'shelfquest catalog sync' first.")
        return

    table = Table(title="Challenges", show_header=True, header_style="bold magenta")
    table.add_column("Title", style="cyan")
    table.add_column("Type")
    table.add_column("Target", justify="right")
    table.add_column("Period")
    table.add_column("Kind")
    table.add_column("ID", style="dim")

    for t in templates:
        table.add_row(
            t.title,
            t.challenge_type,
            str(t.target),
            t.period,
            "official" if t.is_predefined else "custom",
            t.id,
        )

    console.print(table)


@challenge_app.command("list")
def challenge_list(
    all_: bool = typer.Option(False, "--all", "-a", help="Include archived challenges"),
    refresh: bool = typer.Option(True, "--refresh/--no-refresh", help="Recompute progress first"),
) -> None:
    """List the challenges you joined."""
    manager = _challenge_manager()
    enrollments = manager.list_enrollments(
        _user(), refresh=refresh, include_archived=all_
    )

    if not enrollments:
        print_info("No challenges joined. Browse them with 'challenge templates'.")
        return

    table = Table(title="My Challenges", show_header=True, header_style="bold magenta")
    table.add_column("Title", style="cyan")
    table.add_column("Progress", justify="right")
    table.add_column("Target", justify="right")
    table.add_column("", justify="left")
    table.add_column("%", justify="right")
    table.add_column("State")

    state_styles = {
        "active": "[yellow]active[/yellow]",
        "paused": "[dim]paused[/dim]",
        "completed": "[bold green]DONE[/bold green]",
        "archived": "[dim]archived[/dim]",
    }

    for enrollment in enrollments:
        summary = manager.summarize(enrollment)
        table.add_row(
            summary.title,
            str(summary.progress),
            str(summary.target),
            _progress_bar(summary.percent),
            f"{summary.percent:.0f}%",
            state_styles.get(summary.state.value, summary.state.value),
        )

    console.print(table)


@challenge_app.command("join")
def challenge_join(
    template: str = typer.Argument(..., help="Challenge ID or title"),
    start: Optional[str] = typer.Option(None, "--start", "-s", help="Count from (YYYY-MM-DD)"),
    end: Optional[str] = typer.Option(None, "--end", "-e", help="Count until (YYYY-MM-DD)"),
) -> None:
    """Join a challenge."""
    manager = _challenge_manager()
    found = manager.find_template(template)
    if not found:
        print_error(f"Challenge not found: {template}")
        raise typer.Exit(1)

    result = manager.join(
        _user(), found.id, _parse_date(start, "start date"), _parse_date(end, "end date")
    )
    if not result:
        print_error(result.error)
        raise typer.Exit(1)

    enrollment = result.enrollment
    print_success(f"Joined: {found.title}")
    console.print(f"[dim]Progress: {enrollment.progress}/{found.target}[/dim]")
    if result.newly_completed:
        console.print("[bold green]Challenge completed![/bold green]")


@challenge_app.command("create")
def challenge_create(
    title: str = typer.Argument(..., help="Challenge title"),
    target: int = typer.Argument(..., help="Target number to reach"),
    challenge_type: str = typer.Option("BOOK_COUNT", "--type", "-t", help="How progress is measured"),
    period: str = typer.Option("ANYTIME", "--period", "-p", help="WEEKLY, MONTHLY, QUARTERLY, YEARLY, ANYTIME"),
    description: Optional[str] = typer.Option(None, "--description", "-d", help="Description"),
    genre: Optional[str] = typer.Option(None, "--genre", "-g", help="Only count books of this genre"),
    icon: Optional[str] = typer.Option(None, "--icon", help="Icon"),
    start: Optional[str] = typer.Option(None, "--start", "-s", help="Count from (YYYY-MM-DD)"),
    end: Optional[str] = typer.Option(None, "--end", "-e", help="Count until (YYYY-MM-DD)"),
) -> None:
    """Create a personal challenge and join it."""
    from .challenges import ChallengePeriod, ChallengeType, TemplateCreate

    try:
        ctype = ChallengeType(challenge_type.upper())
    except ValueError:
        print_error(f"Invalid challenge type: {challenge_type}")
        console.print(f"[dim]Valid types: {', '.join(t.value for t in ChallengeType)}[/dim]")
        raise typer.Exit(1)

    try:
        cperiod = ChallengePeriod(period.upper())
    except ValueError:
        print_error(f"Invalid period: {period}")
        console.print(f"[dim]Valid periods: {', '.join(p.value for p in ChallengePeriod)}[/dim]")
        raise typer.Exit(1)

    try:
        data = TemplateCreate(
            title=title,
            description=description,
            challenge_type=ctype,
            target=target,
            period=cperiod,
            icon=icon,
            genre_filter=genre,
            start_date=_parse_date(start, "start date"),
            end_date=_parse_date(end, "end date"),
        )
    except ValidationError as e:
        print_error(str(e.errors()[0]["msg"]))
        raise typer.Exit(1)

    result = _challenge_manager().create_custom_challenge(_user(), data)
    if not result:
        print_error(result.error)
        raise typer.Exit(1)

    print_success(f"Challenge created: {title}")
    console.print(f"[dim]Target: {target} ({ctype.value}, {cperiod.value})[/dim]")


@challenge_app.command("refresh")
def challenge_refresh(
    challenge: Optional[str] = typer.Argument(None, help="Challenge (or all if omitted)"),
) -> None:
    """Recompute challenge progress."""
    manager = _challenge_manager()

    if challenge:
        enrollment = _find_enrollment(manager, challenge)
        result = manager.refresh_progress(enrollment.id)
        if not result:
            print_error(result.error)
            raise typer.Exit(1)
        print_success(f"Refreshed: {result.enrollment.template.title}")
        console.print(
            f"[dim]Progress: {result.progress}/{result.enrollment.template.target}[/dim]"
        )
        if result.newly_completed:
            console.print("[bold green]Challenge completed![/bold green]")
        return

    results = manager.refresh_all(_user())
    completed = [r for r in results if r.newly_completed]
    print_success(f"Refreshed {len(results)} challenges")
    for r in completed:
        console.print(f"[bold green]Challenge completed:[/bold green] {r.enrollment.template.title}")


@challenge_app.command("progress")
def challenge_progress(
    challenge: str = typer.Argument(..., help="Challenge ID or title"),
    delta: int = typer.Argument(..., help="Amount to add (negative to remove)"),
) -> None:
    """Add manual progress to a challenge."""
    manager = _challenge_manager()
    enrollment = _find_enrollment(manager, challenge)
    result = manager.add_manual_progress(enrollment.id, delta)
    if not result:
        print_error(result.error)
        raise typer.Exit(1)

    current = result.enrollment
    print_success(f"Updated: {current.template.title}")
    console.print(
        f"[dim]Progress: {current.progress}/{current.template.target} "
        f"(manual {current.manual_progress:+d})[/dim]"
    )
    if result.newly_completed:
        console.print("[bold green]Challenge completed![/bold green]")


@challenge_app.command("show")
def challenge_show(
    challenge: str = typer.Argument(..., help="Challenge ID or title"),
) -> None:
    """Show one challenge in detail."""
    manager = _challenge_manager()
    summary = manager.summarize(_find_enrollment(manager, challenge))

    bar_width = 30
    lines = [
        f"[bold]{summary.title}[/bold]",
        f"{summary.challenge_type.value} / {summary.period.value}",
        "",
        f"Progress: [{_progress_bar(summary.percent, bar_width)}] {summary.percent:.1f}%",
        f"Current: {summary.progress} / {summary.target}",
    ]
    if summary.manual_progress:
        lines.append(f"Manual offset: {summary.manual_progress:+d}")
    if summary.start_date:
        lines.append(f"Counting from: {summary.start_date}")
    if summary.end_date:
        lines.append(f"Counting until: {summary.end_date}")
    if summary.completed_at:
        lines.append(f"Completed: {summary.completed_at[:10]}")

    console.print(Panel("\n".join(lines), title=summary.state.value.upper(), style="cyan"))


@challenge_app.command("pause")
def challenge_pause(challenge: str = typer.Argument(..., help="Challenge ID or title")) -> None:
    """Pause a challenge."""
    manager = _challenge_manager()
    _report(manager.pause(_find_enrollment(manager, challenge).id), "Paused")


@challenge_app.command("resume")
def challenge_resume(challenge: str = typer.Argument(..., help="Challenge ID or title")) -> None:
    """Resume a paused challenge."""
    manager = _challenge_manager()
    _report(manager.resume(_find_enrollment(manager, challenge).id), "Resumed")


@challenge_app.command("archive")
def challenge_archive(challenge: str = typer.Argument(..., help="Challenge ID or title")) -> None:
    """Archive a challenge."""
    manager = _challenge_manager()
    _report(manager.archive(_find_enrollment(manager, challenge).id), "Archived")


@challenge_app.command("relaunch")
def challenge_relaunch(challenge: str = typer.Argument(..., help="Challenge ID or title")) -> None:
    """Start a completed or archived challenge over from today."""
    manager = _challenge_manager()
    _report(manager.relaunch(_find_enrollment(manager, challenge).id), "Relaunched")


# ============================================================================
# Badge Commands
# ============================================================================


@badge_app.command("list")
def badge_list() -> None:
    """List the badges you unlocked."""
    from .badges import BadgeEvaluator

    badges = BadgeEvaluator(_db()).list_badges(_user())
    if not badges:
        print_info("No badges yet. Keep reading!")
        return

    table = Table(title="Badges", show_header=True, header_style="bold magenta")
    table.add_column("", justify="center")
    table.add_column("Badge", style="cyan")
    table.add_column("Description")
    table.add_column("Unlocked")

    for badge in badges:
        table.add_row(badge.icon or "", badge.name, badge.description or "", badge.unlocked_at[:10])

    console.print(table)


@badge_app.command("board")
def badge_board() -> None:
    """Show every badge, locked and unlocked, by category."""
    from .badges import BadgeEvaluator

    board = BadgeEvaluator(_db()).badge_board(_user())
    total = sum(len(entries) for entries in board.values())
    unlocked = sum(1 for entries in board.values() for e in entries if e.unlocked)

    for category, entries in board.items():
        table = Table(title=category.value.title(), show_header=False, box=None)
        table.add_column("", justify="center")
        table.add_column("Badge")
        table.add_column("Description", style="dim")
        for entry in entries:
            name = f"[bold]{entry.name}[/bold]" if entry.unlocked else f"[dim]{entry.name}[/dim]"
            table.add_row(entry.icon if entry.unlocked else "🔒", name, entry.description)
        console.print(table)

    console.print(f"\n[bold]{unlocked}/{total}[/bold] badges unlocked")


@badge_app.command("check")
def badge_check() -> None:
    """Unlock any badges you have earned."""
    from .badges import BadgeEvaluator

    awarded = BadgeEvaluator(_db()).evaluate(_user())
    if not awarded:
        print_info("No new badges.")
        return

    for badge in awarded:
        console.print(f"[bold magenta]Badge unlocked:[/bold magenta] {badge.icon} {badge.name}")


# ============================================================================
# Streak Commands
# ============================================================================


@streak_app.command("show")
def streak_show() -> None:
    """Show your current and longest reading streaks."""
    from .activity import ActivityStore
    from .streaks import StreakCalculator

    dates = ActivityStore(_db()).activity_dates(_user())
    if not dates:
        print_info("No reading activity yet. Start your streak!")
        return

    calculator = StreakCalculator(dates)
    content = (
        f"[bold]Current Streak:[/bold] {calculator.current_streak()} days\n"
        f"[bold]Longest Streak:[/bold] {calculator.longest_streak()} days\n"
        f"[dim]Last activity: {dates[0]}[/dim]"
    )
    console.print(Panel(content, title="[blue]Streak Status[/blue]"))


@streak_app.command("log")
def streak_log(
    book: str = typer.Argument(..., help="Book ID or title"),
    on: Optional[str] = typer.Option(None, "--date", "-d", help="Date (YYYY-MM-DD)"),
) -> None:
    """Log a day of reading."""
    target = _find_book(book)
    activity_date = _parse_date(on) or date.today()

    if _db().log_activity(_user(), target.id, activity_date):
        print_success(f"Logged reading of {target.title} on {activity_date}")
        _refresh_after_activity()
    else:
        print_info(f"Reading of {target.title} on {activity_date} was already logged")


@streak_app.command("backfill")
def streak_backfill() -> None:
    """Rebuild reading activity from your books' start and finish dates."""
    created = _db().populate_activity_from_books(_user())
    print_success(f"Created {created} reading activities")


# ============================================================================
# Catalog Commands
# ============================================================================


@catalog_app.command("sync")
def catalog_sync() -> None:
    """Create missing official challenges and retire stale ones."""
    from .challenges import CatalogReconciler

    report = CatalogReconciler(_db()).reconcile()

    for title in report.created:
        console.print(f"[green]+[/green] {title}")
    for title in report.retired:
        console.print(f"[red]-[/red] {title}")
    for title in report.failed:
        print_warning(f"Could not sync: {title}")

    if report.changed:
        print_success(
            f"Catalog synced ({report.purged_enrollments} stale enrollment(s) removed)"
        )
    else:
        print_info("Catalog already up to date.")

    if report.failed:
        raise typer.Exit(1)


# ============================================================================
# Version Command
# ============================================================================


@app.command()
def version() -> None:
    """Show version information."""
    from . import __version__

    console.print(f"shelfquest version {__version__}")


# ============================================================================
# Main Entry Point
# ============================================================================


def main() -> None:
    """Main entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
