#!/usr/bin/env python3
"""
Ticket Normalizer
Coerces scraped page text into the canonical Ticket record.

Every function here is total: unrecognized or missing input yields a fixed
default instead of an exception, so a ticket is never rejected because the
tracker grew a new enum value or printed a date in an unexpected format.
"""

import re
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Dict, List, Optional

from .config import TracSyncConfig
from .ticket_models import (
    Attachment,
    ChangesetRef,
    Comment,
    RawTicket,
    Ticket,
    TicketPriority,
    TicketSeverity,
    TicketStatus,
    TicketType,
)

# Lowercase aliases, checked before the enum values themselves
TYPE_ALIASES: Dict[str, TicketType] = {
    'bug': TicketType.DEFECT,
}

PAREN_SUFFIX = re.compile(r'\s*\(.*\)\s*$')
LIST_SPLIT_PATTERN = re.compile(r'[\s,]+')
SIZE_PATTERN = re.compile(r'(\d+(?:\.\d+)?)\s*(bytes|KB|MB|GB)?', re.IGNORECASE)

SIZE_MULTIPLIERS = {
    'bytes': 1,
    'kb': 1024,
    'mb': 1024 ** 2,
    'gb': 1024 ** 3,
}

TIMELINE_PREFIX = re.compile(r'^\s*see timeline at\s+', re.IGNORECASE)

# Formats Trac renders dates in, depending on locale and version
DATE_FORMATS = (
    '%Y-%m-%d %H:%M:%S',
    '%Y-%m-%d %H:%M',
    '%Y-%m-%d',
    '%b %d, %Y, %I:%M:%S %p',
    '%b %d, %Y %I:%M:%S %p',
    '%B %d, %Y, %I:%M:%S %p',
    '%m/%d/%Y %I:%M:%S %p',
    '%m/%d/%y %I:%M:%S %p',
    '%m/%d/%Y %H:%M:%S',
    '%m/%d/%y %H:%M:%S',
    '%d/%m/%Y %H:%M:%S',
)


def _match_enum(value: Optional[str], enum_cls, default, aliases=None):
    if not value:
        return default
    key = value.strip().lower()
    # "defect (bug)" is how some trackers label the default type
    for candidate in (key, PAREN_SUFFIX.sub('', key).strip()):
        if aliases and candidate in aliases:
            return aliases[candidate]
        try:
            return enum_cls(candidate)
        except ValueError:
            continue
    return default


def normalize_type(value: Optional[str]) -> TicketType:
    return _match_enum(value, TicketType, TicketType.DEFECT, TYPE_ALIASES)


def normalize_status(value: Optional[str]) -> TicketStatus:
    return _match_enum(value, TicketStatus, TicketStatus.NEW)


def normalize_priority(value: Optional[str]) -> TicketPriority:
    return _match_enum(value, TicketPriority, TicketPriority.NORMAL)


def normalize_severity(value: Optional[str]) -> TicketSeverity:
    return _match_enum(value, TicketSeverity, TicketSeverity.NORMAL)


def split_list(value: Optional[str]) -> List[str]:
    """Split a whitespace/comma delimited field into trimmed tokens"""
    if not value:
        return []
    return [token for token in LIST_SPLIT_PATTERN.split(value) if token]


def parse_size(value: Optional[str]) -> int:
    """
    Parse a human size such as "10.5 MB" into bytes (binary multiples).

    Returns 0 when no number can be found.
    """
    if not value:
        return 0
    match = SIZE_PATTERN.search(value)
    if not match:
        return 0
    unit = (match.group(2) or 'bytes').lower()
    try:
        return int(float(match.group(1)) * SIZE_MULTIPLIERS[unit])
    except (OverflowError, ValueError):
        return 0


def parse_date(value: Optional[str]) -> Optional[datetime]:
    """
    Parse a tracker date string into an aware UTC datetime.

    Returns None (never a sentinel date) when nothing matches, so callers can
    decide on their own fallback.
    """
    if not value:
        return None
    text = TIMELINE_PREFIX.sub('', value).strip()
    if not text:
        return None

    parsed = None
    iso_text = text[:-1] + '+00:00' if text.endswith('Z') else text
    try:
        parsed = datetime.fromisoformat(iso_text)
    except ValueError:
        pass

    if parsed is None:
        for fmt in DATE_FORMATS:
            try:
                parsed = datetime.strptime(text, fmt)
                break
            except ValueError:
                continue

    if parsed is None:
        try:
            parsed = parsedate_to_datetime(text)
        except (TypeError, ValueError, IndexError, OverflowError):
            return None

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    try:
        return parsed.astimezone(timezone.utc)
    except OverflowError:
        # offset pushes the instant past year 1 or 9999
        return None


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def changeset_url(base_url: str, revision: int) -> str:
    return f"{base_url.rstrip('/')}/changeset/{revision}"


def normalize_ticket(ticket_id: int, url: str, raw: RawTicket, base_url: str,
                     ingested_at: Optional[datetime] = None) -> Ticket:
    """Build the complete Ticket record for one scraped page"""
    now = ingested_at or datetime.now(timezone.utc)
    resolution = _clean(raw.resolution)

    comments = [
        Comment(
            id=index,
            author=_clean(rc.author) or TracSyncConfig.UNKNOWN_AUTHOR,
            timestamp=parse_date(rc.timestamp) or now,
            content=(rc.content or '').strip(),
            changes=list(rc.changes),
        )
        for index, rc in enumerate(raw.comments, start=1)
    ]

    attachments = [
        Attachment(
            filename=ra.filename.strip(),
            size=parse_size(ra.size),
            uploaded_by=ra.uploaded_by.strip(),
            uploaded_at=parse_date(ra.uploaded_at) or now,
            url=ra.url or '',
            description=_clean(ra.description),
        )
        for ra in raw.attachments
        if _clean(ra.filename) and _clean(ra.uploaded_by)
    ]

    changesets = [
        ChangesetRef(
            revision=revision,
            author=TracSyncConfig.UNKNOWN_AUTHOR,
            timestamp=now,
            message=TracSyncConfig.CHANGESET_STUB_MESSAGE,
            url=changeset_url(base_url, revision),
        )
        for revision in raw.changeset_revisions
    ]

    return Ticket(
        ticket_id=ticket_id,
        url=url,
        title=(raw.title or '').strip(),
        description=(raw.description or '').strip(),
        type=normalize_type(raw.type),
        status=normalize_status(raw.status),
        priority=normalize_priority(raw.priority),
        severity=normalize_severity(raw.severity) if _clean(raw.severity) else None,
        component=_clean(raw.component) or TracSyncConfig.UNKNOWN_COMPONENT,
        version=_clean(raw.version),
        milestone=_clean(raw.milestone),
        owner=_clean(raw.owner),
        reporter=_clean(raw.reporter) or TracSyncConfig.UNKNOWN_AUTHOR,
        keywords=split_list(raw.keywords),
        focuses=split_list(raw.focuses),
        cc_list=split_list(raw.cc),
        created_at=parse_date(raw.time) or now,
        updated_at=parse_date(raw.changetime) or now,
        resolution=resolution,
        resolution_date=parse_date(raw.changetime) if resolution else None,
        comments=comments,
        attachments=attachments,
        related_changesets=changesets,
    )
