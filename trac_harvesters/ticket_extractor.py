#!/usr/bin/env python3
"""
Ticket Extractor
Turns one ticket detail page into a RawTicket.

Heuristics handled here:
- Property labels as printed ("Reported by:", "Change Time") mapped to field keys
- Rows carrying several header/value pairs
- "<field> changed from <old> to <new>" history lines
- Changeset references written as [123], r123 or changeset:123
"""

import re
import logging
from typing import Iterable, List, Optional

from trac_core.ticket_models import RAW_PROPERTY_FIELDS, RawComment, RawTicket, TicketChange
from .trac_markup import TicketMarkup, TracMarkup

logger = logging.getLogger(__name__)

CHANGE_PATTERN = re.compile(r'^(.+?)\s+changed from\s+(.+?)\s+to\s+(.+)$', re.IGNORECASE)
CHANGESET_PATTERN = re.compile(r'\[(\d+)\]|\br(\d+)\b|changeset:(\d+)', re.IGNORECASE)

# Trac's printed labels that differ from the field name
LABEL_ALIASES = {
    'reported by': 'reporter',
    'owned by': 'owner',
    'change time': 'changetime',
    'modified': 'changetime',
    'last modified': 'changetime',
    'opened': 'time',
    'created': 'time',
}


def property_key(label: str) -> str:
    key = label.strip().lower().rstrip(':').strip()
    return LABEL_ALIASES.get(key, key)


def parse_change_line(text: str) -> Optional[TicketChange]:
    match = CHANGE_PATTERN.match(' '.join(text.split()))
    if not match:
        return None
    return TicketChange(
        field=match.group(1).strip(),
        old_value=match.group(2).strip(),
        new_value=match.group(3).strip(),
    )


def find_changeset_revisions(texts: Iterable[Optional[str]]) -> List[int]:
    """Revision numbers referenced in the given texts, first mention first"""
    revisions: List[int] = []
    for text in texts:
        if not text:
            continue
        for match in CHANGESET_PATTERN.finditer(text):
            revision = int(match.group(1) or match.group(2) or match.group(3))
            if revision and revision not in revisions:
                revisions.append(revision)
    return revisions


class TicketExtractor:
    """Reads RawTicket records off ticket pages via a markup strategy"""

    def __init__(self, base_url: str, markup: Optional[TicketMarkup] = None):
        self.base_url = base_url.rstrip('/')
        self.markup = markup or TracMarkup()

    def resolve_url(self, href: Optional[str]) -> Optional[str]:
        if not href:
            return None
        if href.startswith(('http://', 'https://')):
            return href
        return f"{self.base_url}/{href.lstrip('/')}"

    def extract_ticket(self, markup: str) -> Optional[RawTicket]:
        """
        Extract a ticket page.

        Returns None when the page has no title, which is how the tracker
        renders missing or restricted tickets.
        """
        soup = self.markup.parse(markup)

        title = self.markup.title(soup)
        if not title:
            return None

        raw = RawTicket(title=title, description=self.markup.description(soup))

        for label, value in self.markup.properties(soup):
            key = property_key(label)
            if key in RAW_PROPERTY_FIELDS and value and getattr(raw, key) is None:
                setattr(raw, key, value)

        for block in self.markup.change_blocks(soup):
            changes = [c for c in (parse_change_line(line) for line in block.change_lines) if c]
            if not block.content and not changes:
                continue
            raw.comments.append(RawComment(
                author=block.author,
                timestamp=block.timestamp,
                content=block.content,
                changes=changes,
            ))

        for attachment in self.markup.attachments(soup):
            if not (attachment.filename and attachment.uploaded_by):
                continue
            attachment.url = self.resolve_url(attachment.url)
            raw.attachments.append(attachment)

        raw.changeset_revisions = find_changeset_revisions(
            [raw.description] + [c.content for c in raw.comments]
        )

        logger.debug(
            f"Extracted '{title}': {len(raw.comments)} comments, "
            f"{len(raw.attachments)} attachments, {len(raw.changeset_revisions)} changesets"
        )
        return raw
