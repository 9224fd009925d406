#!/usr/bin/env python3
"""
Utility script to view recent authentication audit events and check the
hash chain.

Usage: python scripts/view_audit_logs.py [limit] [action]
"""

import sys
import os

from rich.console import Console
from rich.table import Table
from rich import print as rprint

# Add project root to path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from bountyhub.config import settings
from bountyhub.audit.hash_chain import verify_chain
from bountyhub.audit.models import AuditAction
from bountyhub.audit.sink import AuditSink
from bountyhub.auth.database import get_engine, get_session_factory

console = Console()


def _short(details: dict, width: int = 50) -> str:
    text = str(details)
    return text if len(text) <= width else text[: width - 3] + "..."


def view_logs(limit: int = 20, action: str = None) -> int:
    engine = get_engine(settings.DATABASE_URL)
    session_factory = get_session_factory(engine)
    sink = AuditSink(session_factory)

    try:
        events = sink.list_events(action=AuditAction(action) if action else None, limit=limit)

        table = Table(title=f"Audit Logs (Limit: {limit})")
        table.add_column("Seq", style="dim", justify="right")
        table.add_column("Time", style="cyan", no_wrap=True)
        table.add_column("Action", style="magenta")
        table.add_column("User", style="yellow")
        table.add_column("IP", style="green")
        table.add_column("Details", style="white")

        for event in events:
            table.add_row(
                str(event.seq),
                event.created_at.strftime("%Y-%m-%d %H:%M:%S"),
                event.action.value,
                event.user_id,
                event.ip_address or "-",
                _short(event.details),
            )

        if not events:
            rprint("[yellow]No logs found.[/yellow]")
        else:
            console.print(table)
            rprint(f"\n[dim]Showing {len(events)} events.[/dim]")

        db = session_factory()
        try:
            result = verify_chain(db)
        finally:
            db.close()

        if result.is_valid:
            rprint(f"[green]Hash chain intact ({result.event_count} events).[/green]")
            return 0
        rprint(f"[red]Hash chain broken at event {result.broken_at}.[/red]")
        return 1
    finally:
        engine.dispose()


if __name__ == "__main__":
    limit = int(sys.argv[1]) if len(sys.argv) > 1 else 20
    action = sys.argv[2] if len(sys.argv) > 2 else None
    sys.exit(view_logs(limit, action))
