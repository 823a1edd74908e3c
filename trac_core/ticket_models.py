"""Ticket records: the canonical stored shape and the raw scraped shape."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class TicketType(str, Enum):
    DEFECT = 'defect'
    ENHANCEMENT = 'enhancement'
    FEATURE_REQUEST = 'feature request'
    TASK = 'task'


class TicketStatus(str, Enum):
    NEW = 'new'
    ASSIGNED = 'assigned'
    ACCEPTED = 'accepted'
    REVIEWING = 'reviewing'
    TESTING = 'testing'
    CLOSED = 'closed'


class TicketPriority(str, Enum):
    TRIVIAL = 'trivial'
    MINOR = 'minor'
    NORMAL = 'normal'
    MAJOR = 'major'
    CRITICAL = 'critical'
    BLOCKER = 'blocker'


class TicketSeverity(str, Enum):
    TRIVIAL = 'trivial'
    MINOR = 'minor'
    NORMAL = 'normal'
    MAJOR = 'major'
    CRITICAL = 'critical'


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _from_iso(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


@dataclass
class TicketChange:
    """A property transition recorded alongside a comment"""
    field: str
    old_value: Optional[str] = None
    new_value: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {'field': self.field, 'oldValue': self.old_value, 'newValue': self.new_value}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TicketChange':
        return cls(field=data['field'], old_value=data.get('oldValue'), new_value=data.get('newValue'))


@dataclass
class Comment:
    id: int
    author: str
    timestamp: datetime
    content: str
    changes: List[TicketChange] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'id': self.id,
            'author': self.author,
            'timestamp': _iso(self.timestamp),
            'content': self.content,
        }
        if self.changes:
            data['changes'] = [c.to_dict() for c in self.changes]
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Comment':
        return cls(
            id=data['id'],
            author=data['author'],
            timestamp=_from_iso(data['timestamp']),
            content=data.get('content', ''),
            changes=[TicketChange.from_dict(c) for c in data.get('changes', [])],
        )


@dataclass
class Attachment:
    filename: str
    size: int
    uploaded_by: str
    uploaded_at: datetime
    url: str
    description: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'filename': self.filename,
            'size': self.size,
            'uploadedBy': self.uploaded_by,
            'uploadedAt': _iso(self.uploaded_at),
            'description': self.description,
            'url': self.url,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Attachment':
        return cls(
            filename=data['filename'],
            size=data['size'],
            uploaded_by=data['uploadedBy'],
            uploaded_at=_from_iso(data['uploadedAt']),
            url=data['url'],
            description=data.get('description'),
        )


@dataclass
class ChangesetRef:
    revision: int
    author: str
    timestamp: datetime
    message: str
    url: str
    files: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'revision': self.revision,
            'author': self.author,
            'timestamp': _iso(self.timestamp),
            'message': self.message,
            'files': list(self.files),
            'url': self.url,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ChangesetRef':
        return cls(
            revision=data['revision'],
            author=data['author'],
            timestamp=_from_iso(data['timestamp']),
            message=data['message'],
            url=data['url'],
            files=list(data.get('files', [])),
        )


@dataclass
class Ticket:
    """
    Canonical ticket record, the shape the query API reads.

    Re-ingestion replaces the stored row wholesale, so every field must be
    populated on each sync.
    """
    ticket_id: int
    url: str
    title: str
    description: str
    type: TicketType
    status: TicketStatus
    priority: TicketPriority
    component: str
    reporter: str
    created_at: datetime
    updated_at: datetime
    severity: Optional[TicketSeverity] = None
    version: Optional[str] = None
    milestone: Optional[str] = None
    owner: Optional[str] = None
    resolution: Optional[str] = None
    resolution_date: Optional[datetime] = None
    keywords: List[str] = field(default_factory=list)
    focuses: List[str] = field(default_factory=list)
    cc_list: List[str] = field(default_factory=list)
    blocked_by: List[int] = field(default_factory=list)
    blocking: List[int] = field(default_factory=list)
    comments: List[Comment] = field(default_factory=list)
    attachments: List[Attachment] = field(default_factory=list)
    related_changesets: List[ChangesetRef] = field(default_factory=list)

    def __post_init__(self):
        if self.ticket_id < 1:
            raise ValueError(f"Ticket id must be positive, got {self.ticket_id}")
        if self.resolution is None:
            self.resolution_date = None

    @property
    def comment_text(self) -> str:
        """All comment bodies joined, for the full-text index"""
        return '\n'.join(c.content for c in self.comments if c.content)


@dataclass
class RawComment:
    author: Optional[str] = None
    timestamp: Optional[str] = None
    content: Optional[str] = None
    changes: List[TicketChange] = field(default_factory=list)


@dataclass
class RawAttachment:
    filename: Optional[str] = None
    size: Optional[str] = None
    uploaded_by: Optional[str] = None
    uploaded_at: Optional[str] = None
    description: Optional[str] = None
    url: Optional[str] = None


@dataclass
class RawTicket:
    """Everything read off a ticket page, still as page text"""
    title: Optional[str] = None
    description: Optional[str] = None
    type: Optional[str] = None
    status: Optional[str] = None
    priority: Optional[str] = None
    severity: Optional[str] = None
    component: Optional[str] = None
    version: Optional[str] = None
    milestone: Optional[str] = None
    owner: Optional[str] = None
    reporter: Optional[str] = None
    keywords: Optional[str] = None
    focuses: Optional[str] = None
    cc: Optional[str] = None
    time: Optional[str] = None
    changetime: Optional[str] = None
    resolution: Optional[str] = None
    comments: List[RawComment] = field(default_factory=list)
    attachments: List[RawAttachment] = field(default_factory=list)
    changeset_revisions: List[int] = field(default_factory=list)


# Property table keys that map onto RawTicket attributes
RAW_PROPERTY_FIELDS = (
    'type', 'status', 'priority', 'severity', 'component', 'version',
    'milestone', 'owner', 'reporter', 'keywords', 'focuses', 'cc', 'time',
    'changetime', 'resolution',
)
