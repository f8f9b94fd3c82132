#!/usr/bin/env python3
"""
Main CLI entry point for LifeCompass.
"""
import asyncio
import inspect
import logging
import sys
from typing import Any, Callable, Dict, Optional, Tuple

import click
from rich.console import Console
from rich.table import Table
from rich.panel import Panel
from rich.box import ROUNDED
from rich.logging import RichHandler

from lifecompass import __version__
from lifecompass.api.client import SupabaseStore
from lifecompass.api.errors import RemoteStoreError
from lifecompass.config import load_config, remote_enabled, snapshot_path, write_default_config
from lifecompass.core.achievements import ACHIEVEMENT_DEFINITIONS
from lifecompass.core.models import RATING_MAX, RATING_MIN, Mode, ReflectionPeriod, UserProfile, ValueKind
from lifecompass.core.questions import (
    LIFE_AREA_IDS, LIFE_AREAS_QUESTION_ID, MODE_INFO, PERIOD_INFO, get_questions_for_mode, kind_for_question,
)
from lifecompass.core.reflection_engine import ReflectionEngine, ReflectionEngineError
from lifecompass.core.snapshot_store import JsonFileSnapshotStore

console = Console()
logger = logging.getLogger(__name__)

MODE_CHOICE = click.Choice([m.value for m in Mode])
PERIOD_CHOICE = click.Choice([p.value for p in ReflectionPeriod])


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )


async def _open_engine(config: Dict[str, Any]) -> Tuple[ReflectionEngine, Optional[SupabaseStore]]:
    """Engine over the configured snapshot, signed in when a user id is configured."""
    remote = SupabaseStore.from_config(config) if remote_enabled(config) else None
    engine = ReflectionEngine(JsonFileSnapshotStore(snapshot_path(config)), remote_store=remote)

    user_id = config.get('supabase', {}).get('user_id')
    if remote is not None and user_id:
        try:
            profile = await remote.get_profile(user_id)
        except RemoteStoreError as e:
            logger.warning(f"Could not fetch profile for {user_id}, continuing as guest: {e}")
        else:
            engine.set_user(profile or UserProfile(id=user_id), hydrate=False)
    return engine, remote


async def _run_async(config: Dict[str, Any], action: Callable[[ReflectionEngine], Any]) -> Any:
    engine, remote = await _open_engine(config)
    try:
        result = action(engine)
        if inspect.isawaitable(result):
            result = await result
        await engine.drain()
        return result
    finally:
        if remote is not None:
            await remote.close()


def _run(ctx: click.Context, action: Callable[[ReflectionEngine], Any]) -> Any:
    """Run an engine action (sync or async) and drain background sync."""
    config = load_config(ctx.obj['config_path'])
    _setup_logging(config.get('logging', {}).get('level', 'INFO'))
    try:
        return asyncio.run(_run_async(config, action))
    except ReflectionEngineError as e:
        console.print(f"[red]❌ Error: {e}[/red]")
        sys.exit(1)


def _parse_answer(question_id: str, values: Tuple[str, ...]) -> Any:
    kind = kind_for_question(question_id)
    if kind == ValueKind.LIST:
        return list(values)
    if kind in (ValueKind.RATINGS, ValueKind.CALENDAR):
        pairs = {}
        for item in values:
            key, sep, raw = item.partition('=')
            if not sep or not key.strip():
                raise click.BadParameter(f"Expected key=value, got {item!r}")
            if kind == ValueKind.RATINGS:
                try:
                    rating = int(raw)
                except ValueError:
                    raise click.BadParameter(f"Rating for {key} must be an integer")
                if not RATING_MIN <= rating <= RATING_MAX:
                    raise click.BadParameter(f"Rating for {key} must be between {RATING_MIN} and {RATING_MAX}")
                if question_id == LIFE_AREAS_QUESTION_ID and key.strip() not in LIFE_AREA_IDS:
                    raise click.BadParameter(f"Unknown life area {key!r}")
                pairs[key.strip()] = rating
            else:
                pairs[key.strip()] = raw.strip()
        return pairs
    return " ".join(values)


def _reflection_table(title: str, reflections) -> Table:
    table = Table(title=title, box=ROUNDED)
    table.add_column("ID", style="cyan")
    table.add_column("Year")
    table.add_column("Period")
    table.add_column("Mode")
    table.add_column("Progress", justify="right")
    table.add_column("Status")
    table.add_column("Sync")
    for r in reflections:
        table.add_row(
            r.id, str(r.year), PERIOD_INFO[r.period].name, MODE_INFO[r.mode].name,
            f"{r.progress}%",
            "[green]completed[/green]" if r.completed else "[yellow]in progress[/yellow]",
            "local" if r.local_only else "synced",
        )
    return table


@click.group()
@click.version_option(version=__version__)
@click.option('--config', '-c', 'config_path', default="config.yaml", help="Path to config file")
@click.pass_context
def cli(ctx, config_path):
    """LifeCompass - reflect on your year, plan the next one."""
    ctx.ensure_object(dict)
    ctx.obj['config_path'] = config_path


@cli.command()
@click.argument('year', type=int)
@click.option('--mode', '-m', type=MODE_CHOICE, default=Mode.QUICK.value, help="Reflection depth")
@click.option('--period', '-p', type=PERIOD_CHOICE, default=ReflectionPeriod.YEAR_END.value,
              help="Checkpoint within the year")
@click.pass_context
def start(ctx, year, mode, period):
    """Start a new reflection."""
    def action(engine):
        reflection = engine.start_reflection(year, mode, period)
        questions = get_questions_for_mode(reflection.mode)
        console.print(Panel.fit(
            f"[bold cyan]{PERIOD_INFO[reflection.period].name} {reflection.year}[/bold cyan]\n"
            f"{MODE_INFO[reflection.mode].name} ({MODE_INFO[reflection.mode].time}), "
            f"{len(questions)} questions",
            subtitle=reflection.id,
        ))
        console.print(f"[green]✅ Started reflection {reflection.id}[/green]")
    _run(ctx, action)


@cli.command()
@click.argument('question_id')
@click.argument('values', nargs=-1, required=True)
@click.pass_context
def answer(ctx, question_id, values):
    """Answer a question (list items as separate args, ratings/calendar as key=value)."""
    raw = _parse_answer(question_id, values)

    def action(engine):
        engine.set_response(question_id, raw)
        console.print(f"[green]✅ Saved {question_id}[/green] ({engine.get_progress()}% done)")
    _run(ctx, action)


@cli.command()
@click.pass_context
def progress(ctx):
    """Show progress of the current reflection."""
    def action(engine):
        current = engine.current_reflection
        if current is None:
            console.print("[yellow]No reflection in progress[/yellow]")
            return
        console.print(f"{current.year} {MODE_INFO[current.mode].name}: {engine.get_progress()}%")
    _run(ctx, action)


@cli.command()
@click.pass_context
def complete(ctx):
    """Complete the current reflection."""
    def action(engine):
        before = {a.type for a in engine.achievements}
        reflection = engine.complete_reflection()
        if reflection is None:
            console.print("[yellow]No reflection in progress[/yellow]")
            return
        console.print(f"[green]✅ Completed reflection {reflection.id}[/green]")
        for achievement in engine.achievements:
            if achievement.type not in before:
                definition = ACHIEVEMENT_DEFINITIONS[achievement.type]
                console.print(f"🏆 [bold]{definition.name}[/bold]: {definition.description}")
        options = engine.can_upgrade(reflection)
        if options.can_upgrade:
            modes = ", ".join(m.value for m in options.available_modes)
            console.print(f"Go deeper with: lifecompass upgrade {reflection.id} <{modes}>")
    _run(ctx, action)


@cli.command()
@click.argument('reflection_id')
@click.argument('mode', type=MODE_CHOICE)
@click.pass_context
def upgrade(ctx, reflection_id, mode):
    """Start a deeper reflection pre-filled from an earlier one."""
    def action(engine):
        reflection = engine.upgrade_mode(reflection_id, mode)
        console.print(f"[green]✅ Upgraded to {MODE_INFO[reflection.mode].name}[/green] "
                      f"as {reflection.id} ({reflection.progress}% already answered)")
    _run(ctx, action)


@cli.command()
@click.pass_context
def history(ctx):
    """List all reflections."""
    def action(engine):
        reflections = engine.reflections
        if not reflections:
            console.print("[yellow]No reflections yet[/yellow]")
            return
        console.print(_reflection_table("Reflections", reflections))
    _run(ctx, action)


@cli.command()
@click.argument('reflection_id')
@click.pass_context
def load(ctx, reflection_id):
    """Make an earlier reflection the current one."""
    def action(engine):
        engine.load_reflection(reflection_id)
        current = engine.current_reflection
        if current is None or current.id != reflection_id:
            console.print(f"[yellow]No reflection {reflection_id}[/yellow]")
            return
        console.print(f"[green]✅ Loaded {reflection_id}[/green]")
    _run(ctx, action)


@cli.command()
@click.argument('reflection_id', required=False)
@click.pass_context
def show(ctx, reflection_id):
    """Show answers of the current (or given) reflection."""
    def action(engine):
        reflection, questions = engine.get_export_view(reflection_id)
        table = Table(title=f"{PERIOD_INFO[reflection.period].name} {reflection.year} "
                            f"({MODE_INFO[reflection.mode].name})", box=ROUNDED)
        table.add_column("Question", style="cyan")
        table.add_column("Answer")
        for question in questions:
            response = reflection.responses.get(question.id)
            table.add_row(question.title, response.value.to_text() if response else "[dim]-[/dim]")
        console.print(table)
    _run(ctx, action)


@cli.command()
@click.option('--mode', '-m', type=MODE_CHOICE, default=Mode.DEEP.value, help="Mode to list")
def questions(mode):
    """List the questions asked in a mode."""
    table = Table(title=f"{MODE_INFO[Mode(mode)].name} questions", box=ROUNDED)
    table.add_column("ID", style="cyan")
    table.add_column("Section")
    table.add_column("Type")
    table.add_column("Title")
    for question in get_questions_for_mode(Mode(mode)):
        table.add_row(question.id, question.section.value, question.type.value, question.title)
    console.print(table)


@cli.command()
@click.pass_context
def reset(ctx):
    """Discard the current reflection (history is kept)."""
    def action(engine):
        engine.reset_current_journey()
        console.print("[green]✅ Current reflection cleared[/green]")
    _run(ctx, action)


@cli.command()
@click.pass_context
def achievements(ctx):
    """Show achievements."""
    def action(engine):
        unlocked = {a.type: a for a in engine.achievements}
        table = Table(title="Achievements", box=ROUNDED)
        table.add_column("Achievement", style="cyan")
        table.add_column("Description")
        table.add_column("Unlocked")
        for achievement_type, definition in ACHIEVEMENT_DEFINITIONS.items():
            achievement = unlocked.get(achievement_type)
            table.add_row(definition.name, definition.description,
                          achievement.unlocked_at.strftime("%Y-%m-%d") if achievement else "-")
        console.print(table)
    _run(ctx, action)


@cli.command()
@click.argument('user_id')
@click.pass_context
def signin(ctx, user_id):
    """Sign in as USER_ID and load (or offer to migrate) data."""
    async def action(engine):
        if engine.remote_store is None:
            console.print("[red]❌ Remote store not configured (set SUPABASE_URL and SUPABASE_ANON_KEY)[/red]")
            sys.exit(1)
        try:
            profile = await engine.remote_store.get_profile(user_id)
        except RemoteStoreError as e:
            console.print(f"[red]❌ Error: {e}[/red]")
            sys.exit(1)
        engine.set_user(profile or UserProfile(id=user_id))
        console.print(f"[green]✅ Signed in as {user_id}[/green]")
        if engine.migration_pending:
            summary = engine.get_local_data_summary()
            years = ", ".join(str(y) for y in summary.years)
            console.print(f"[yellow]Local data found: {summary.reflection_count} reflections "
                          f"({years}), {summary.achievement_count} achievements.[/yellow]")
            console.print("Run: lifecompass migrate")
        console.print("Set LIFECOMPASS_USER_ID to stay signed in")
    _run(ctx, action)


@cli.command()
@click.pass_context
def signout(ctx):
    """Sign out (local data is kept)."""
    def action(engine):
        engine.set_user(None)
        console.print("[green]✅ Signed out[/green]")
    _run(ctx, action)


@cli.command()
@click.option('--skip', is_flag=True, help="Keep local data local")
@click.pass_context
def migrate(ctx, skip):
    """Upload local data to the signed-in account."""
    async def action(engine):
        if engine.user is None:
            console.print("[red]❌ Not signed in[/red]")
            sys.exit(1)
        if skip:
            engine.skip_migration()
            console.print("Migration skipped")
            return
        result = await engine.migrate_local_to_cloud()
        table = Table(title="Migration", box=ROUNDED, show_header=False)
        table.add_row("Reflections", str(result.migrated_reflections))
        table.add_row("Achievements", str(result.migrated_achievements))
        table.add_row("Status", "[green]✅ done[/green]" if result.success else "[red]❌ incomplete[/red]")
        console.print(table)
        for error in result.errors:
            console.print(f"[red]{error}[/red]")
        if not result.success:
            sys.exit(1)
    _run(ctx, action)


@cli.command()
@click.pass_context
def sync(ctx):
    """Push the current reflection to the remote store."""
    async def action(engine):
        if await engine.sync_to_cloud():
            console.print("[green]✅ Synced[/green]")
        else:
            console.print(f"[yellow]Nothing synced (status: {engine.sync_status.value})[/yellow]")
    _run(ctx, action)


@cli.command()
@click.option('--init', 'init_file', is_flag=True, help="Write a default config file")
@click.option('--show-key', is_flag=True, help="Show full keys (be careful!)")
@click.pass_context
def config(ctx, init_file, show_key):
    """Show current configuration."""
    config_path = ctx.obj['config_path']
    if init_file:
        path = write_default_config(config_path)
        console.print(f"[green]✅ Wrote {path}[/green]")
        return

    settings = load_config(config_path)
    table = Table(title="Current Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="yellow")
    for section, values in settings.items():
        if not isinstance(values, dict):
            table.add_row(section, str(values))
            continue
        for key, value in values.items():
            if value is None:
                shown = "[red]NOT SET[/red]"
            elif key in ('anon_key', 'access_token') and not show_key:
                text = str(value)
                shown = "•" * max(len(text) - 4, 0) + text[-4:]
            else:
                shown = str(value)
            table.add_row(f"{section}.{key}", shown)
    console.print(table)
    if not remote_enabled(settings):
        console.print("[yellow]Remote sync disabled: running local-only[/yellow]")


@cli.command()
@click.pass_context
def test(ctx):
    """Test the remote store connection."""
    settings = load_config(ctx.obj['config_path'])
    if not remote_enabled(settings):
        console.print("[red]❌ SUPABASE_URL / SUPABASE_ANON_KEY not configured[/red]")
        sys.exit(1)

    async def _test_async():
        async with SupabaseStore.from_config(settings) as store:
            return await store.test_connection()

    with console.status("[bold green]Testing remote connection..."):
        ok = asyncio.run(_test_async())
    if ok:
        console.print("[green]✅ Remote store reachable[/green]")
    else:
        console.print("[red]❌ Remote connection failed[/red]")
        sys.exit(1)


if __name__ == "__main__":
    cli()
