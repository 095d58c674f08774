"""
Admin CLI using Typer.
"""

import asyncio
import logging
from pathlib import Path
from typing import Annotated, List, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from ..config import AppConfig, get_default_config_path
from ..domain.exceptions import CalendarError, ValidationError
from ..domain.models import WEEKDAY_NAMES, CalendarDay, CalendarMonth, ProfessionalRef, VisitType
from ..domain.serialization import format_date, parse_date
from ..services.availability import parse_template_ranges
from ..services.booking import BookingRequest
from ..services.reconciliation import ReconciliationReport
from ..services.runtime import Runtime, build_runtime

app = typer.Typer(
    name="carecalendar",
    help="Availability calendar and booking reconciliation for the care marketplace",
    add_completion=False
)

console = Console()

ConfigOption = Annotated[Optional[Path], typer.Option("--config", "-c", help="Path to config file. Defaults to ./config.yaml")]
MockOption = Annotated[bool, typer.Option("--mock", help="Use the bundled mock marketplace and an in-memory calendar.")]
VerboseOption = Annotated[bool, typer.Option("--verbose", "-v", help="Show debug logging.")]
ProfessionalArgument = Annotated[str, typer.Argument(help="Professional as kind:id, e.g. doctor:dr-mehta")]

PHASES = ("full", "booking", "availability", "prune", "init")


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def _load_config(config_file: Optional[Path], mock: bool) -> AppConfig:
    """Load the YAML config; mock mode may run on defaults."""
    config_path = config_file or get_default_config_path()
    if mock and config_file is None and not config_path.exists():
        return AppConfig()
    return AppConfig.load_from_yaml(config_path)


def _runtime(config_file: Optional[Path], mock: bool, verbose: bool) -> Runtime:
    _setup_logging(verbose)
    config = _load_config(config_file, mock)
    if mock:
        console.print("[yellow]⚠  MOCK MODE: using test data[/yellow]\n")
    return build_runtime(config, mock=mock)


def _parse_professional(value: str) -> ProfessionalRef:
    try:
        return ProfessionalRef.parse(value)
    except ValueError as e:
        raise ValidationError(str(e)) from e


def _parse_day(value: Optional[str], runtime: Runtime):
    if value is None:
        return runtime.calendar.today()
    try:
        return parse_date(value)
    except ValueError as e:
        raise ValidationError(f"Invalid date {value!r}. Use YYYY-MM-DD") from e


def _parse_weekday(value: str) -> int:
    names = {name.lower(): index for index, name in enumerate(WEEKDAY_NAMES)}
    key = value.strip().lower()
    if key in names:
        return names[key]
    if key.isdigit() and 0 <= int(key) <= 6:
        return int(key)
    raise ValidationError(f"Unknown weekday {value!r}. Use a name (monday) or 0-6")


def _fail(error: Exception) -> None:
    console.print(f"[bold red]Error:[/bold red] {error}")
    raise typer.Exit(1)


def _day_rows(table: Table, day: CalendarDay) -> None:
    if not day.schedules:
        return
    for entry in day.schedules:
        table.add_row(
            format_date(day.date),
            day.weekday_name[:3],
            str(entry.professional),
            ", ".join(str(hours) for hours in entry.working_hours) or "-",
            ", ".join(str(item) for item in entry.breaks) or "-",
            ", ".join(str(slot) for slot in entry.booked_slots) or "-",
            "[green]yes[/green]" if entry.is_available else "[red]no[/red]",
        )


def _schedule_table(title: str, days: List[CalendarDay]) -> Table:
    table = Table(title=title, show_header=True, header_style="bold cyan")
    table.add_column("Date", style="bold yellow")
    table.add_column("Day")
    table.add_column("Professional")
    table.add_column("Working hours")
    table.add_column("Breaks", style="dim")
    table.add_column("Booked")
    table.add_column("Available")
    for day in days:
        _day_rows(table, day)
    return table


def _print_month(month: CalendarMonth) -> None:
    title = f"Calendar {month.key}"
    if month.generated:
        title += " (generated from the ledger, read-only)"
    table = _schedule_table(title, month.days)
    console.print()
    if table.row_count:
        console.print(table)
    else:
        console.print(f"[yellow]No schedules in {month.key}.[/yellow]")
    console.print()


def _print_report(report: ReconciliationReport) -> None:
    if report.skipped:
        console.print(f"[yellow]⊘ {report.trigger} skipped: a reconciliation pass is already running[/yellow]")
        return

    table = Table(title=f"Reconciliation: {report.trigger}", show_header=True, header_style="bold cyan")
    table.add_column("Phase", style="bold")
    table.add_column("Result")
    table.add_column("Changed", justify="right")
    for phase in report.phases:
        result = "[green]✓ ok[/green]" if phase.ok else f"[red]✗ {phase.error}[/red]"
        table.add_row(phase.name, result, str(phase.changed))

    console.print()
    console.print(table)
    console.print()


@app.command()
def calendar(
    year: Annotated[int, typer.Argument(help="Year, e.g. 2025")],
    month: Annotated[int, typer.Argument(help="Month 1-12")],
    professional: Annotated[Optional[str], typer.Option("--professional", "-p", help="Filter to one professional (kind:id)")] = None,
    config_file: ConfigOption = None,
    mock: MockOption = False,
    verbose: VerboseOption = False,
):
    """
    Show a calendar month, optionally for one professional.

    Past months outside the retention window are generated from the ledger.
    """
    try:
        runtime = _runtime(config_file, mock, verbose)
        ref = _parse_professional(professional) if professional else None
        _print_month(asyncio.run(runtime.calendar.query_month(year, month, ref)))
    except (CalendarError, FileNotFoundError, ValueError) as e:
        _fail(e)


@app.command()
def schedule(
    professional: ProfessionalArgument,
    date: Annotated[Optional[str], typer.Option("--date", "-d", help="Day (YYYY-MM-DD), defaults to today")] = None,
    week: Annotated[bool, typer.Option("--week", "-w", help="Show seven days starting at --date")] = False,
    config_file: ConfigOption = None,
    mock: MockOption = False,
    verbose: VerboseOption = False,
):
    """
    Show the day or week schedule of one professional.
    """
    try:
        runtime = _runtime(config_file, mock, verbose)
        ref = _parse_professional(professional)
        day = _parse_day(date, runtime)

        if week:
            days = asyncio.run(runtime.calendar.week_schedule(ref, day))
        else:
            days = [asyncio.run(runtime.calendar.get_day(day, ref))]

        table = _schedule_table(f"Schedule of {ref}", days)
        console.print()
        if table.row_count:
            console.print(table)
        else:
            console.print(f"[yellow]{ref} has no schedule from {format_date(day)}.[/yellow]")
        console.print()
    except (CalendarError, FileNotFoundError, ValueError) as e:
        _fail(e)


@app.command()
def slots(
    professional: ProfessionalArgument,
    date: Annotated[Optional[str], typer.Option("--date", "-d", help="Day (YYYY-MM-DD), defaults to today")] = None,
    duration: Annotated[Optional[int], typer.Option("--duration", help="Slot duration in minutes")] = None,
    visit_type: Annotated[Optional[VisitType], typer.Option("--visit-type", "-t", help="clinic or home")] = None,
    config_file: ConfigOption = None,
    mock: MockOption = False,
    verbose: VerboseOption = False,
):
    """
    List free slots of one professional on one day.

    Examples:

        carecalendar slots doctor:dr-mehta --date 2025-03-10 --duration 30 --mock
        carecalendar slots physiotherapist:physio-rao --visit-type home --mock
    """
    try:
        runtime = _runtime(config_file, mock, verbose)
        ref = _parse_professional(professional)
        day = _parse_day(date, runtime)

        found = asyncio.run(runtime.slots.find_slots(
            professional=ref,
            day=day,
            duration_minutes=duration,
            visit_type=visit_type,
        ))

        console.print()
        if not found:
            console.print(f"[yellow]⚠ No free slots for {ref} on {format_date(day)}.[/yellow]")
        else:
            console.print(f"[bold green]✓ {len(found)} free slot(s) for {ref} on {format_date(day)}:[/bold green]\n")
            for slot in found:
                console.print(f"  {slot.format_display()}")
        console.print()
    except (CalendarError, FileNotFoundError, ValueError) as e:
        _fail(e)


@app.command()
def book(
    professional: ProfessionalArgument,
    date: Annotated[str, typer.Argument(help="Day (YYYY-MM-DD)")],
    start: Annotated[str, typer.Argument(help="Start time (HH:MM)")],
    end: Annotated[str, typer.Argument(help="End time (HH:MM)")],
    booking_id: Annotated[str, typer.Option("--booking-id", help="Ledger id of the appointment")],
    subject_id: Annotated[str, typer.Option("--subject-id", help="Patient id")] = "",
    config_file: ConfigOption = None,
    mock: MockOption = False,
    verbose: VerboseOption = False,
):
    """
    Reserve a slot for an appointment already recorded in the ledger.
    """
    try:
        runtime = _runtime(config_file, mock, verbose)
        request = BookingRequest(
            professional=_parse_professional(professional),
            date=_parse_day(date, runtime),
            start=start,
            end=end,
            booking_id=booking_id,
            subject_id=subject_id,
        )
        slot = asyncio.run(runtime.booking.book_slot(request))
        console.print(f"\n[green]✓ Booked {slot} for {request.professional} on {format_date(request.date)}[/green]\n")
    except (CalendarError, FileNotFoundError, ValueError) as e:
        _fail(e)


@app.command()
def release(
    professional: ProfessionalArgument,
    date: Annotated[str, typer.Argument(help="Day (YYYY-MM-DD)")],
    booking_id: Annotated[str, typer.Argument(help="Ledger id of the appointment")],
    config_file: ConfigOption = None,
    mock: MockOption = False,
    verbose: VerboseOption = False,
):
    """
    Remove a booked slot immediately instead of waiting for the next sync.
    """
    try:
        runtime = _runtime(config_file, mock, verbose)
        ref = _parse_professional(professional)
        slot = asyncio.run(runtime.booking.release_slot(ref, _parse_day(date, runtime), booking_id))
        console.print(f"\n[green]✓ Released {slot}[/green]\n")
    except (CalendarError, FileNotFoundError, ValueError) as e:
        _fail(e)


@app.command()
def availability(
    professional: ProfessionalArgument,
    weekday: Annotated[str, typer.Argument(help="Weekday name or 0-6 (0 = Monday)")],
    ranges: Annotated[Optional[List[str]], typer.Argument(help="Ranges as HH:MM-HH:MM; none clears the day")] = None,
    visit_type: Annotated[VisitType, typer.Option("--visit-type", "-t", help="clinic or home")] = VisitType.CLINIC,
    capacity: Annotated[int, typer.Option("--capacity", help="Patients per range")] = 1,
    config_file: ConfigOption = None,
    mock: MockOption = False,
    verbose: VerboseOption = False,
):
    """
    Replace one weekday of a professional's availability template.

    The calendar follows through a targeted availability sync.
    """
    try:
        runtime = _runtime(config_file, mock, verbose)
        ref = _parse_professional(professional)
        day_index = _parse_weekday(weekday)
        parsed = parse_template_ranges(ranges or [], visit_type=visit_type, capacity=capacity)

        async def update():
            template = await runtime.availability.update_day(ref, day_index, parsed)
            await runtime.availability.wait_for_pending()
            return template

        template = asyncio.run(update())
        summary = ", ".join(str(item) for item in template.ranges_for(day_index)) or "off"
        console.print(f"\n[green]✓ {WEEKDAY_NAMES[day_index]} for {ref}: {summary}[/green]\n")
    except (CalendarError, FileNotFoundError, ValueError) as e:
        _fail(e)


@app.command("add-break")
def add_break(
    professional: ProfessionalArgument,
    date: Annotated[str, typer.Argument(help="Day (YYYY-MM-DD)")],
    start: Annotated[str, typer.Argument(help="Start time (HH:MM)")],
    end: Annotated[str, typer.Argument(help="End time (HH:MM)")],
    reason: Annotated[str, typer.Option("--reason", help="Shown in the schedule")] = "Break",
    config_file: ConfigOption = None,
    mock: MockOption = False,
    verbose: VerboseOption = False,
):
    """
    Block time on a professional's day.
    """
    try:
        runtime = _runtime(config_file, mock, verbose)
        ref = _parse_professional(professional)
        created = asyncio.run(runtime.calendar.add_break(ref, _parse_day(date, runtime), start, end, reason))
        console.print(f"\n[green]✓ Added break {created} (id {created.id})[/green]\n")
    except (CalendarError, FileNotFoundError, ValueError) as e:
        _fail(e)


@app.command("remove-break")
def remove_break(
    professional: ProfessionalArgument,
    date: Annotated[str, typer.Argument(help="Day (YYYY-MM-DD)")],
    break_id: Annotated[str, typer.Argument(help="Id shown when the break was added")],
    config_file: ConfigOption = None,
    mock: MockOption = False,
    verbose: VerboseOption = False,
):
    """
    Remove a break by id.
    """
    try:
        runtime = _runtime(config_file, mock, verbose)
        ref = _parse_professional(professional)
        removed = asyncio.run(runtime.calendar.remove_break(ref, _parse_day(date, runtime), break_id))
        console.print(f"\n[green]✓ Removed break {removed}[/green]\n")
    except (CalendarError, FileNotFoundError, ValueError) as e:
        _fail(e)


@app.command("set-available")
def set_available(
    professional: ProfessionalArgument,
    date: Annotated[str, typer.Argument(help="Day (YYYY-MM-DD)")],
    available: Annotated[bool, typer.Option("--available/--unavailable", help="Take bookings on this day")] = True,
    config_file: ConfigOption = None,
    mock: MockOption = False,
    verbose: VerboseOption = False,
):
    """
    Mark a professional available or unavailable on one day.

    Refused while the day has bookings.
    """
    try:
        runtime = _runtime(config_file, mock, verbose)
        ref = _parse_professional(professional)
        day = _parse_day(date, runtime)
        asyncio.run(runtime.calendar.set_day_availability(ref, day, available))
        state = "available" if available else "unavailable"
        console.print(f"\n[green]✓ {ref} is {state} on {format_date(day)}[/green]\n")
    except (CalendarError, FileNotFoundError, ValueError) as e:
        _fail(e)


@app.command()
def reconcile(
    phase: Annotated[str, typer.Option("--phase", help=f"One of: {', '.join(PHASES)}")] = "full",
    professional: Annotated[Optional[str], typer.Option("--professional", "-p", help="Limit availability sync to one professional")] = None,
    config_file: ConfigOption = None,
    mock: MockOption = False,
    verbose: VerboseOption = False,
):
    """
    Run a reconciliation pass now.
    """
    try:
        if phase not in PHASES:
            raise ValidationError(f"Unknown phase {phase!r}; expected one of {', '.join(PHASES)}")

        runtime = _runtime(config_file, mock, verbose)
        job = runtime.job
        ref = _parse_professional(professional) if professional else None

        if phase == "booking":
            report = asyncio.run(job.run_booking_sync())
        elif phase == "availability":
            report = asyncio.run(job.run_availability_sync(ref))
        elif phase == "prune":
            report = asyncio.run(job.run_retention_prune())
        elif phase == "init":
            report = asyncio.run(job.run_month_initialization())
        else:
            report = asyncio.run(job.run_full_pass(trigger="manual"))

        _print_report(report)
        if not report.ok:
            raise typer.Exit(1)
    except (CalendarError, FileNotFoundError, ValueError) as e:
        _fail(e)


@app.command()
def prune(
    config_file: ConfigOption = None,
    mock: MockOption = False,
    verbose: VerboseOption = False,
):
    """
    Delete calendar months older than the retention window.
    """
    try:
        runtime = _runtime(config_file, mock, verbose)
        report = asyncio.run(runtime.job.run_retention_prune(trigger="manual prune"))
        _print_report(report)
        if not report.ok:
            raise typer.Exit(1)
    except (CalendarError, FileNotFoundError, ValueError) as e:
        _fail(e)


@app.command("init-month")
def init_month(
    year: Annotated[int, typer.Argument(help="Year, e.g. 2025")],
    month: Annotated[int, typer.Argument(help="Month 1-12")],
    config_file: ConfigOption = None,
    mock: MockOption = False,
    verbose: VerboseOption = False,
):
    """
    Create the calendar for a current or future month.
    """
    try:
        runtime = _runtime(config_file, mock, verbose)
        created = asyncio.run(runtime.calendar.initialize_month(year, month))
        entries = sum(1 for _ in created.entries())
        console.print(f"\n[green]✓ Calendar {created.key} ready ({entries} schedule entries)[/green]\n")
    except (CalendarError, FileNotFoundError, ValueError) as e:
        _fail(e)


@app.command()
def status(
    config_file: ConfigOption = None,
    mock: MockOption = False,
    verbose: VerboseOption = False,
):
    """
    Show stored calendar months by age and the rolling window.
    """
    try:
        runtime = _runtime(config_file, mock, verbose)
        current = asyncio.run(runtime.calendar.system_status())

        def keys(values) -> str:
            return ", ".join(str(key) for key in values) or "-"

        console.print(Panel.fit(
            f"[bold]Today:[/bold] {format_date(current.today)}\n"
            f"[bold]Window:[/bold] {current.window[0]} – {current.window[-1]}\n"
            f"[bold]Retention floor:[/bold] {current.retention_floor}\n\n"
            f"[bold]Active months:[/bold] {keys(current.active)}\n"
            f"[bold]Missing in window:[/bold] {keys(current.missing)}\n"
            f"[bold]Retained past months:[/bold] {keys(current.retained)}\n"
            f"[bold]Expired (awaiting prune):[/bold] {keys(current.expired)}\n"
            f"[bold]Beyond window:[/bold] {keys(current.beyond_window)}\n"
            f"[bold]Total stored:[/bold] {current.total}",
            title="Calendar status"
        ))
    except (CalendarError, FileNotFoundError, ValueError) as e:
        _fail(e)


@app.command()
def health(
    config_file: ConfigOption = None,
    mock: MockOption = False,
    verbose: VerboseOption = False,
):
    """
    Report active bookings of the current month missing from the calendar.

    Read-only; run `reconcile --phase booking` to repair what it finds.
    """
    try:
        runtime = _runtime(config_file, mock, verbose)
        report = asyncio.run(runtime.calendar.health_check())

        color = "green" if report.status == "HEALTHY" else "yellow"
        counts = ", ".join(f"{kind}={count}" for kind, count in sorted(report.counts.items())) or "-"
        console.print(Panel.fit(
            f"[bold]Month:[/bold] {report.month} "
            f"({'stored, ' + str(report.stored_days) + ' days' if report.month_stored else 'not stored'})\n"
            f"[bold]Active bookings:[/bold] {report.active_bookings}\n"
            f"[bold]Inconsistencies:[/bold] {len(report.inconsistencies)} ({counts})\n"
            f"[bold]Status:[/bold] [{color}]{report.status}[/{color}]",
            title="Calendar health"
        ))
        for item in report.inconsistencies[:10]:
            console.print(f"  • {item}")
    except (CalendarError, FileNotFoundError, ValueError) as e:
        _fail(e)


@app.command("month-details")
def month_details(
    year: Annotated[int, typer.Argument(help="Year, e.g. 2025")],
    month: Annotated[int, typer.Argument(help="Month 1-12")],
    config_file: ConfigOption = None,
    mock: MockOption = False,
    verbose: VerboseOption = False,
):
    """
    Show appointment statistics for a month by status, professional and weekday.
    """
    try:
        runtime = _runtime(config_file, mock, verbose)
        stats = asyncio.run(runtime.calendar.month_details(year, month))

        console.print(Panel.fit(
            f"[bold]Past month:[/bold] {'yes' if stats.is_past else 'no'}\n"
            f"[bold]Stored calendar:[/bold] {str(stats.stored_days) + ' days' if stats.stored else 'no'}\n"
            f"[bold]Appointments:[/bold] {stats.total}",
            title=f"Month {stats.month}"
        ))

        table = Table(show_header=True, header_style="bold cyan")
        table.add_column("Breakdown", style="bold")
        table.add_column("Value")
        table.add_column("Count", justify="right")
        for label, counts in (
            ("Status", stats.by_status),
            ("Professional", stats.by_kind),
            ("Weekday", stats.by_weekday),
        ):
            for value, count in sorted(counts.items()):
                table.add_row(label, value, str(count))
        if table.row_count:
            console.print(table)
    except (CalendarError, FileNotFoundError, ValueError) as e:
        _fail(e)


@app.command()
def serve(
    config_file: ConfigOption = None,
    mock: MockOption = False,
    verbose: VerboseOption = False,
):
    """
    Run the reconciliation scheduler until interrupted.
    """
    try:
        runtime = _runtime(config_file, mock, verbose)
    except (CalendarError, FileNotFoundError, ValueError) as e:
        _fail(e)
        return

    async def run_forever():
        runtime.scheduler.start()
        for task in runtime.scheduler.tasks():
            console.print(f"  • {task.description}")
        try:
            while True:
                await asyncio.sleep(3600)
        finally:
            runtime.scheduler.stop()

    console.print("\n[bold cyan]Reconciliation scheduler running[/bold cyan] (Ctrl+C to stop)\n")
    try:
        asyncio.run(run_forever())
    except KeyboardInterrupt:
        console.print("\n[yellow]Scheduler stopped.[/yellow]\n")


@app.command()
def version():
    """
    Show version information.
    """
    from .. import __version__
    console.print(f"\n[bold cyan]carecalendar[/bold cyan] version [bold]{__version__}[/bold]\n")


if __name__ == "__main__":
    app()
