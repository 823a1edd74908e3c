#!/usr/bin/env python3
"""
Ticket Store
Idempotent persistence of canonical tickets into PostgreSQL.

One row per ticket, keyed by ticket_id. Comments, attachments and changeset
references are owned by the ticket and stored as JSONB documents next to it;
an upsert always rewrites the whole row.
"""

import json
import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

import psycopg

from .config import TracSyncConfig
from .database_manager import DatabaseManager, get_database_manager
from .exceptions import PersistenceError
from .ticket_models import (
    Attachment,
    ChangesetRef,
    Comment,
    Ticket,
    TicketPriority,
    TicketSeverity,
    TicketStatus,
    TicketType,
)

logger = logging.getLogger(__name__)

TABLE = TracSyncConfig.TICKETS_TABLE


def _enum_check(column: str, enum_cls) -> str:
    values = ", ".join(f"'{member.value}'" for member in enum_cls)
    return f"CHECK ({column} IN ({values}))"


CREATE_TABLE_SQL = f"""
CREATE TABLE IF NOT EXISTS {TABLE} (
    ticket_id INTEGER PRIMARY KEY CHECK (ticket_id > 0),
    url TEXT NOT NULL,
    title TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    type TEXT NOT NULL {_enum_check('type', TicketType)},
    status TEXT NOT NULL {_enum_check('status', TicketStatus)},
    priority TEXT NOT NULL {_enum_check('priority', TicketPriority)},
    severity TEXT NULL {_enum_check('severity', TicketSeverity)},
    component TEXT NOT NULL,
    version TEXT NULL,
    milestone TEXT NULL,
    owner TEXT NULL,
    reporter TEXT NOT NULL,
    resolution TEXT NULL,
    resolution_date TIMESTAMPTZ NULL,
    keywords TEXT[] NOT NULL DEFAULT '{{}}',
    focuses TEXT[] NOT NULL DEFAULT '{{}}',
    cc_list TEXT[] NOT NULL DEFAULT '{{}}',
    blocked_by INTEGER[] NOT NULL DEFAULT '{{}}',
    blocking INTEGER[] NOT NULL DEFAULT '{{}}',
    created_at TIMESTAMPTZ NOT NULL,
    updated_at TIMESTAMPTZ NOT NULL,
    comments JSONB NOT NULL DEFAULT '[]',
    attachments JSONB NOT NULL DEFAULT '[]',
    related_changesets JSONB NOT NULL DEFAULT '[]',
    comment_text TEXT NOT NULL DEFAULT '',
    synced_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
)
"""

# ticket_id is covered by the primary key
INDEX_STATEMENTS = [
    f"CREATE INDEX IF NOT EXISTS {TABLE}_type_idx ON {TABLE} (type)",
    f"CREATE INDEX IF NOT EXISTS {TABLE}_status_idx ON {TABLE} (status)",
    f"CREATE INDEX IF NOT EXISTS {TABLE}_priority_idx ON {TABLE} (priority)",
    f"CREATE INDEX IF NOT EXISTS {TABLE}_component_idx ON {TABLE} (component)",
    f"CREATE INDEX IF NOT EXISTS {TABLE}_milestone_idx ON {TABLE} (milestone)",
    f"CREATE INDEX IF NOT EXISTS {TABLE}_created_at_idx ON {TABLE} (created_at DESC)",
    f"CREATE INDEX IF NOT EXISTS {TABLE}_updated_at_idx ON {TABLE} (updated_at DESC)",
    f"CREATE INDEX IF NOT EXISTS {TABLE}_status_priority_idx ON {TABLE} (status, priority)",
    f"CREATE INDEX IF NOT EXISTS {TABLE}_component_status_idx ON {TABLE} (component, status)",
    f"CREATE INDEX IF NOT EXISTS {TABLE}_milestone_status_idx ON {TABLE} (milestone, status)",
    f"CREATE INDEX IF NOT EXISTS {TABLE}_keywords_idx ON {TABLE} USING GIN (keywords)",
    f"CREATE INDEX IF NOT EXISTS {TABLE}_focuses_idx ON {TABLE} USING GIN (focuses)",
    f"""
    CREATE INDEX IF NOT EXISTS {TABLE}_search_idx ON {TABLE}
    USING GIN (to_tsvector('english', title || ' ' || description || ' ' || comment_text))
    """,
]

# (column, placeholder) in insert order
UPSERT_COLUMNS = [
    ('ticket_id', '%s'),
    ('url', '%s'),
    ('title', '%s'),
    ('description', '%s'),
    ('type', '%s'),
    ('status', '%s'),
    ('priority', '%s'),
    ('severity', '%s'),
    ('component', '%s'),
    ('version', '%s'),
    ('milestone', '%s'),
    ('owner', '%s'),
    ('reporter', '%s'),
    ('resolution', '%s'),
    ('resolution_date', '%s'),
    ('keywords', '%s::text[]'),
    ('focuses', '%s::text[]'),
    ('cc_list', '%s::text[]'),
    ('blocked_by', '%s::integer[]'),
    ('blocking', '%s::integer[]'),
    ('created_at', '%s'),
    ('updated_at', '%s'),
    ('comments', '%s::jsonb'),
    ('attachments', '%s::jsonb'),
    ('related_changesets', '%s::jsonb'),
    ('comment_text', '%s'),
]

UPSERT_SQL = (
    f"INSERT INTO {TABLE} ({', '.join(c for c, _ in UPSERT_COLUMNS)}, synced_at) "
    f"VALUES ({', '.join(p for _, p in UPSERT_COLUMNS)}, NOW()) "
    f"ON CONFLICT (ticket_id) DO UPDATE SET "
    + ", ".join(f"{c} = EXCLUDED.{c}" for c, _ in UPSERT_COLUMNS if c != 'ticket_id')
    + ", synced_at = NOW()"
)


def ticket_to_params(ticket: Ticket) -> tuple:
    """Flatten a ticket into UPSERT_SQL parameters"""
    return (
        ticket.ticket_id,
        ticket.url,
        ticket.title,
        ticket.description,
        ticket.type.value,
        ticket.status.value,
        ticket.priority.value,
        ticket.severity.value if ticket.severity else None,
        ticket.component,
        ticket.version,
        ticket.milestone,
        ticket.owner,
        ticket.reporter,
        ticket.resolution,
        ticket.resolution_date,
        list(ticket.keywords),
        list(ticket.focuses),
        list(ticket.cc_list),
        list(ticket.blocked_by),
        list(ticket.blocking),
        ticket.created_at,
        ticket.updated_at,
        json.dumps([c.to_dict() for c in ticket.comments], ensure_ascii=False),
        json.dumps([a.to_dict() for a in ticket.attachments], ensure_ascii=False),
        json.dumps([cs.to_dict() for cs in ticket.related_changesets], ensure_ascii=False),
        ticket.comment_text,
    )


def _load_json(value: Any) -> List[Dict[str, Any]]:
    if value is None:
        return []
    if isinstance(value, (str, bytes)):
        return json.loads(value)
    return value


def row_to_ticket(row: Dict[str, Any]) -> Ticket:
    return Ticket(
        ticket_id=row['ticket_id'],
        url=row['url'],
        title=row['title'],
        description=row['description'],
        type=TicketType(row['type']),
        status=TicketStatus(row['status']),
        priority=TicketPriority(row['priority']),
        severity=TicketSeverity(row['severity']) if row.get('severity') else None,
        component=row['component'],
        version=row.get('version'),
        milestone=row.get('milestone'),
        owner=row.get('owner'),
        reporter=row['reporter'],
        resolution=row.get('resolution'),
        resolution_date=row.get('resolution_date'),
        keywords=list(row.get('keywords') or []),
        focuses=list(row.get('focuses') or []),
        cc_list=list(row.get('cc_list') or []),
        blocked_by=list(row.get('blocked_by') or []),
        blocking=list(row.get('blocking') or []),
        created_at=row['created_at'],
        updated_at=row['updated_at'],
        comments=[Comment.from_dict(c) for c in _load_json(row.get('comments'))],
        attachments=[Attachment.from_dict(a) for a in _load_json(row.get('attachments'))],
        related_changesets=[ChangesetRef.from_dict(cs) for cs in _load_json(row.get('related_changesets'))],
    )


class TicketStore:
    """Persistence gateway for canonical tickets"""

    def __init__(self, db_manager: Optional[DatabaseManager] = None):
        self.db = db_manager or get_database_manager()

    def ensure_schema(self) -> None:
        """Create the tickets table and every index the query API relies on"""
        try:
            with self.db.get_cursor() as cursor:
                cursor.execute(CREATE_TABLE_SQL)
                for statement in INDEX_STATEMENTS:
                    cursor.execute(statement)
        except psycopg.Error as e:
            raise PersistenceError(f"Failed to create ticket schema: {e}") from e
        logger.info(f"Ticket schema ready ({len(INDEX_STATEMENTS)} indexes)")

    def upsert_ticket(self, ticket: Ticket) -> None:
        """Insert the ticket, or replace every column of the existing row"""
        try:
            with self.db.get_cursor() as cursor:
                cursor.execute(UPSERT_SQL, ticket_to_params(ticket))
        except psycopg.Error as e:
            raise PersistenceError(
                f"Failed to save ticket {ticket.ticket_id}: {e}", ticket_id=ticket.ticket_id
            ) from e
        logger.info(f"Saved ticket {ticket.ticket_id}: {ticket.title}")

    def get_ticket(self, ticket_id: int) -> Optional[Ticket]:
        try:
            with self.db.get_cursor(dictionary=True) as cursor:
                cursor.execute(f"SELECT * FROM {TABLE} WHERE ticket_id = %s", (ticket_id,))
                row = cursor.fetchone()
        except psycopg.Error as e:
            raise PersistenceError(f"Failed to load ticket {ticket_id}: {e}", ticket_id=ticket_id) from e
        return row_to_ticket(row) if row else None

    def count_tickets(self) -> int:
        try:
            with self.db.get_cursor() as cursor:
                cursor.execute(f"SELECT COUNT(*) FROM {TABLE}")
                row = cursor.fetchone()
        except psycopg.Error as e:
            raise PersistenceError(f"Failed to count tickets: {e}") from e
        return row[0] if row else 0

    @contextmanager
    def sync_lock(self, name: str = TracSyncConfig.SYNC_LOCK_KEY) -> Iterator[bool]:
        """
        Hold a session advisory lock for the duration of a sync run.

        The lock lives on a connection of its own, outside the pool, so the
        run's upserts can use every pool slot. Yields True when the lock was
        taken, False when another process already holds it.
        """
        with self.db.dedicated_connection() as conn:
            try:
                row = conn.execute(
                    "SELECT pg_try_advisory_lock(hashtext(%s))", (name,), prepare=False
                ).fetchone()
            except psycopg.Error as e:
                raise PersistenceError(f"Failed to take sync lock {name!r}: {e}") from e
            acquired = bool(row and row[0])
            try:
                yield acquired
            finally:
                if acquired:
                    conn.execute("SELECT pg_advisory_unlock(hashtext(%s))", (name,), prepare=False)
