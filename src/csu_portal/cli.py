"""CLI for the CSU portal clients."""

import asyncio
import dataclasses
import json
import logging
import os
from pathlib import Path
from typing import Any, Awaitable, TypeVar

import typer
from rich.console import Console
from rich.markdown import Markdown
from rich.table import Table

from . import bus, ecard, jwc, library, summary
from .auth import SsoAuthenticator
from .config import ClientSettings, Credential
from .exceptions import AuthenticationError, PortalError
from .portals import PORTALS

app = typer.Typer(help="CSU unified-auth portal CLI")
console = Console()

T = TypeVar("T")


def load_env():
    """Load environment from local.env if present."""
    for parent in [Path.cwd()] + list(Path.cwd().parents)[:3]:
        env_file = parent / "local.env"
        if env_file.exists():
            with open(env_file) as f:
                for line in f:
                    line = line.strip()
                    if line and not line.startswith("#") and "=" in line:
                        key, _, value = line.partition("=")
                        value = value.strip().strip('"').strip("'")
                        os.environ.setdefault(key.strip(), value)
            break


def get_credential() -> Credential:
    """Load credentials, exiting with a hint if they are missing."""
    load_env()
    try:
        return Credential.from_env()
    except ValueError:
        console.print("[red]Missing configuration:[/red] CSU_STUDENT_ID, CSU_PASSWORD")
        console.print("[dim]Set them in environment or local.env[/dim]")
        raise typer.Exit(1)


def run(operation: Awaitable[T]) -> T:
    """Run a client coroutine, turning portal failures into exit code 1."""
    try:
        return asyncio.run(operation)
    except AuthenticationError as e:
        console.print(f"[red]Authentication failed:[/red] {e}")
        raise typer.Exit(1)
    except PortalError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)


def print_json(data: Any) -> None:
    if dataclasses.is_dataclass(data):
        data = dataclasses.asdict(data)
    elif isinstance(data, list):
        data = [dataclasses.asdict(d) if dataclasses.is_dataclass(d) else d for d in data]
    console.print_json(json.dumps(data, ensure_ascii=False))


def make_table(title: str, columns: list[str]) -> Table:
    table = Table(title=title, show_header=True, header_style="bold")
    for column in columns:
        table.add_column(column)
    return table


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging to stderr"),
):
    """CSU unified-auth portal CLI."""
    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(asctime)s %(name)s %(levelname)s %(message)s")


@app.command()
def login(
    portal: str = typer.Option("jwc", "--portal", "-p", help=f"One of: {', '.join(PORTALS)}"),
):
    """Test CAS authentication against one portal."""
    credential = get_credential()
    if portal not in PORTALS:
        console.print(f"[red]Unknown portal:[/red] {portal}")
        raise typer.Exit(1)

    settings = ClientSettings.from_env()
    console.print(f"CAS URL: [cyan]{settings.cas_login_url}[/cyan]")
    console.print(f"User: [cyan]{credential.masked_id}[/cyan]")

    async def attempt() -> str:
        session = await SsoAuthenticator(PORTALS[portal], settings).login(credential)
        async with session:
            return session.final_url.split("?", 1)[0]

    landed = run(attempt())
    console.print(f"[green]Login successful![/green] {landed}")


# --- Academic affairs ---


@app.command()
def grades(
    term: str = typer.Option("", "--term", "-t", help="Term, e.g. 2024-2025-1 (default: all)"),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
):
    """List course grades."""
    credential = get_credential()
    rows = run(jwc.fetch_grades(credential.student_id, credential.password, term))

    if json_output:
        print_json(rows)
        return
    table = make_table(f"Grades ({len(rows)})", ["Term", "Course", "Grade", "Credit", "Attribute", "Nature"])
    for g in rows:
        table.add_row(g.gotten_term, g.class_name, g.final_grade, g.credit, g.class_attribute, g.class_nature)
    console.print(table)


@app.command()
def rank(
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
):
    """Show score and major rank per term."""
    credential = get_credential()
    rows = run(jwc.fetch_rank(credential.student_id, credential.password))

    if json_output:
        print_json(rows)
        return
    table = make_table("Rank", ["Term", "Total", "Rank", "Average"])
    for r in rows:
        table.add_row(r.term, r.total_score, r.class_rank, r.average_score)
    console.print(table)


@app.command()
def classes(
    term: str = typer.Argument(..., help="Term, e.g. 2024-2025-1"),
    week: str = typer.Option("0", "--week", "-w", help="Week number, 0 for the whole term"),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
):
    """Show the class schedule."""
    credential = get_credential()
    timetable = run(jwc.fetch_timetable(credential.student_id, credential.password, term, week))

    if json_output:
        print_json(timetable)
        return
    if timetable.start_week_day:
        console.print(f"[dim]Week 1 starts {timetable.start_week_day}[/dim]")
    table = make_table(f"Classes ({len(timetable.entries)})", ["Day", "Period", "Course", "Teacher", "Weeks", "Place"])
    for c in timetable.entries:
        table.add_row(c.weekday_name, c.period, c.class_name, c.teacher, c.weeks, c.place)
    console.print(table)


@app.command("level-exams")
def level_exams(
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
):
    """List level exam results (CET and similar)."""
    credential = get_credential()
    rows = run(jwc.fetch_level_exams(credential.student_id, credential.password))

    if json_output:
        print_json(rows)
        return
    columns = [f.name for f in dataclasses.fields(jwc.LevelExam)]
    table = make_table(f"Level exams ({len(rows)})", columns)
    for exam in rows:
        table.add_row(*dataclasses.astuple(exam))
    console.print(table)


@app.command()
def profile(
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
):
    """Show the student registration card."""
    credential = get_credential()
    card = run(jwc.fetch_student_profile(credential.student_id, credential.password))

    if json_output:
        print_json(card)
        return
    table = make_table("Profile", ["Field", "Value"])
    for label, value in card.fields:
        table.add_row(label, value)
    console.print(table)
    for title, rows in (("Education", card.education), ("Family", card.family), ("Status changes", card.status_changes)):
        if rows:
            console.print(f"\n[bold]{title}[/bold]")
            for row in rows:
                console.print("  " + " | ".join(dataclasses.astuple(row)))


@app.command()
def minor(
    no_plans: bool = typer.Option(False, "--no-plans", help="Skip per-registration course plans"),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
):
    """Show minor program registrations and payments."""
    credential = get_credential()
    program = run(jwc.fetch_minor_program(credential.student_id, credential.password, include_plans=not no_plans))

    if json_output:
        print_json(program)
        return
    table = make_table("Minor registrations", ["Major", "Department", "Type", "Status", "Plan courses"])
    for r in program.registrations:
        table.add_row(r.major, r.department, r.program_type, r.status, str(len(r.plan)))
    console.print(table)
    console.print(f"[dim]{len(program.payments)} payment records[/dim]")


@app.command()
def plan(
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
):
    """Show the curriculum plan."""
    credential = get_credential()
    courses = run(jwc.fetch_student_plan(credential.student_id, credential.password))

    if json_output:
        print_json(courses)
        return
    table = make_table(f"Plan ({len(courses)})", ["Term", "Course", "Credit", "Hours", "Exam", "Attribute"])
    for c in courses:
        table.add_row(c.term, c.course_name, c.credit, c.hours, c.exam_type, c.course_attr)
    console.print(table)


@app.command("summary")
def grade_summary(
    output: Path = typer.Option(None, "--output", "-o", help="Write Markdown to file"),
):
    """Render a Markdown grade summary over all terms."""
    credential = get_credential()
    markdown = run(summary.fetch_grade_summary(credential.student_id, credential.password))

    if output:
        output.write_text(markdown, encoding="utf-8")
        console.print(f"[green]Wrote summary to {output}[/green]")
    else:
        console.print(Markdown(markdown))


# --- Campus card ---


@app.command()
def card(
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
):
    """Show campus card balances."""
    credential = get_credential()
    snapshot = run(ecard.fetch_card_info(credential.student_id, credential.password))

    if json_output:
        print_json(snapshot)
        return
    table = make_table("Cards", ["Name", "Account", "Balance", "Pending", "Status"])
    for c in snapshot.cards:
        status = "[red]lost[/red]" if c.lost else "[yellow]frozen[/yellow]" if c.frozen else "[green]ok[/green]"
        table.add_row(c.name, c.account, f"{c.balance:.2f}", f"{c.unsettled:.2f}", status)
    console.print(table)


@app.command()
def turnover(
    time_from: str = typer.Argument(..., help="Start date, e.g. 2025-09-01"),
    time_to: str = typer.Argument(..., help="End date, e.g. 2025-09-30"),
    amount_from: float = typer.Option(None, "--min", help="Minimum amount in yuan"),
    amount_to: float = typer.Option(None, "--max", help="Maximum amount in yuan"),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
):
    """List card transactions in a date range."""
    credential = get_credential()
    page = run(
        ecard.fetch_card_turnover(
            credential.student_id, credential.password, time_from, time_to, amount_from, amount_to
        )
    )

    if json_output:
        print_json(page)
        return
    table = make_table(f"Turnover ({len(page.records)} of {page.total})", ["Time", "Merchant", "Type", "Amount"])
    for r in page.records:
        table.add_row(r.transaction_time_str or r.transaction_time, r.resume, r.turnover_type, f"{r.amount:.2f}")
    console.print(table)


# --- Library ---


@app.command("db-search")
def db_search(
    name: str = typer.Argument(..., help="Database name keyword"),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
):
    """Search the library's electronic databases (no login)."""
    result = run(library.search_library_db(name))

    if json_output:
        print_json(result)
        return
    for title, entries in (("Local", result.local), ("Foreign", result.foreign)):
        table = make_table(f"{title} ({len(entries)})", ["#", "Name", "Access id"])
        for e in entries:
            table.add_row(e.index, e.name, e.access_id)
        console.print(table)


@app.command()
def books(
    keyword: str = typer.Argument(..., help="Search keyword"),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
):
    """Search the OPAC catalog."""
    credential = get_credential()
    result = run(library.search_books(credential.student_id, credential.password, keyword))

    if json_output:
        print_json(result)
        return
    table = make_table(f"Books ({len(result.hits)} of {result.total})", ["Record", "Title", "Author", "Year", "On shelf"])
    for b in result.hits:
        table.add_row(str(b.record_id), b.title, b.author, b.publish_year, f"{b.on_shelf_count}/{b.physical_count}")
    console.print(table)


@app.command()
def copies(
    record_id: str = typer.Argument(..., help="Record id from `books`"),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
):
    """List physical copies of a catalog record."""
    credential = get_credential()
    result = run(library.fetch_book_copies(credential.student_id, credential.password, record_id))

    if json_output:
        print_json(result)
        return
    table = make_table(f"Copies ({result.total})", ["Barcode", "Call no.", "Library", "Location", "Status"])
    for c in result.copies:
        table.add_row(c.barcode, c.call_number, c.lib_name, c.current_location_name or c.location_name, c.process_type)
    console.print(table)


@app.command()
def seats(
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
):
    """Show library seat availability (no login)."""
    campuses = run(library.fetch_seat_campuses())

    if json_output:
        print_json(campuses)
        return
    table = make_table("Seats", ["Campus", "Floor", "Remaining", "Total"])
    for campus in campuses:
        table.add_row(f"[bold]{campus.name}[/bold]", "", str(campus.remaining), str(campus.total))
        for floor in campus.floors:
            table.add_row("", floor.name, str(floor.remaining), str(floor.total))
    console.print(table)


# --- Shuttle bus ---


@app.command("bus")
def bus_search(
    date: str = typer.Argument(..., help="Travel date, e.g. 2025-09-01"),
    start: str = typer.Argument(..., help="Departure station"),
    end: str = typer.Argument(..., help="Arrival station"),
    after: str = typer.Option("", "--after", help="Earliest departure, HH:MM"),
    before: str = typer.Option("", "--before", help="Latest departure, HH:MM"),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
):
    """Search shuttle bus departures (no login)."""
    departures = run(bus.search_bus(date, start, end, after, before))

    if json_output:
        print_json(departures)
        return
    table = make_table(f"Departures ({len(departures)})", ["Time", "Stations"])
    for d in departures:
        table.add_row(d.start_time, " → ".join(d.stations))
    console.print(table)


if __name__ == "__main__":
    app()
