#!/usr/bin/env python3
"""
Operator commands for the event store.
"""

import asyncio
import sys

import typer
from rich.console import Console
from rich.table import Table

from alembic.config import Config
from alembic import command
from chain_watcher.core.database import init_database, close_database, DatabaseManager
from chain_watcher.core.exceptions import NotFoundError
from chain_watcher.core.logging import setup_logging
from chain_watcher.services.event_store import SQLAlchemyEventStore

console = Console()
app = typer.Typer(help="Event store management commands")


async def _open_store() -> SQLAlchemyEventStore:
    setup_logging()
    return SQLAlchemyEventStore(await init_database())


@app.command()
def init():
    """Create the events table."""
    async def _init():
        setup_logging()
        await init_database()
        await DatabaseManager.create_tables()
        await close_database()
        console.print("✅ Database initialized successfully!")

    asyncio.run(_init())


@app.command()
def upgrade(revision: str = "head"):
    """Apply migrations."""
    alembic_cfg = Config("alembic.ini")
    command.upgrade(alembic_cfg, revision)

    console.print(f"✅ Database upgraded to: {revision}")


@app.command()
def status():
    """Show event counts per status and the latest stored block."""
    async def _status():
        store = await _open_store()
        try:
            counts = await store.count_by_status()
            latest = await store.find_latest()
        finally:
            await close_database()

        table = Table(title="Event Store")
        table.add_column("Status", style="cyan")
        table.add_column("Events", style="green", justify="right")
        for event_status, count in counts.items():
            table.add_row(event_status.value, str(count))
        console.print(table)
        console.print(f"Latest block: {latest.block_number if latest else '-'}")

    asyncio.run(_status())


@app.command()
def failed(limit: int = typer.Option(50, help="Maximum rows to show")):
    """List failed events with their errors."""
    async def _failed():
        store = await _open_store()
        try:
            events = await store.find_failed(limit=limit)
        finally:
            await close_database()

        table = Table(title="Failed Events")
        table.add_column("Block", justify="right")
        table.add_column("Tx hash")
        table.add_column("Log", justify="right")
        table.add_column("Event", style="cyan")
        table.add_column("Error", style="red")
        for event in events:
            table.add_row(
                str(event.block_number),
                event.transaction_hash,
                str(event.log_index),
                event.event_name,
                event.processing_error or "",
            )
        console.print(table)

    asyncio.run(_failed())


@app.command()
def requeue(block_number: int, log_index: int, transaction_hash: str):
    """Send a failed event back to the processing queue."""
    async def _requeue():
        store = await _open_store()
        try:
            event = await store.requeue(block_number, log_index, transaction_hash.lower())
        except (NotFoundError, ValueError) as e:
            console.print(f"❌ {e}")
            sys.exit(1)
        finally:
            await close_database()
        console.print(f"✅ Event {event.id} ({event.event_name}) is waiting again")

    asyncio.run(_requeue())


if __name__ == "__main__":
    app()
