#!/usr/bin/env python3
"""
Ticket Sync Runner
Composes enumerator -> fetcher -> extractor -> normalizer -> store for one run.

Failures are isolated per ticket: a ticket that cannot be fetched, parsed or
saved is logged and skipped. Only a failure to read a listing page aborts the
run.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional

from trac_core.config import TracSyncConfig
from trac_core.exceptions import TracSyncError
from trac_core.secure_config import AppConfig
from trac_core.ticket_normalizer import normalize_ticket
from trac_core.ticket_store import TicketStore
from .ticket_enumerator import TicketEnumerator
from .ticket_extractor import TicketExtractor
from .trac_fetcher import TracFetcher

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class IngestResult(Enum):
    SAVED = 'saved'
    NOT_FOUND = 'not_found'
    FAILED = 'failed'


@dataclass
class SyncReport:
    """Outcome of one sync run"""
    mode: str
    started_at: datetime
    finished_at: Optional[datetime] = None
    pages: int = 0
    processed: int = 0
    saved: int = 0
    not_found: List[int] = field(default_factory=list)
    failed: Dict[int, str] = field(default_factory=dict)
    error: Optional[str] = None
    skipped: bool = False

    @property
    def aborted(self) -> bool:
        return self.error is not None

    @property
    def duration_seconds(self) -> float:
        if not self.finished_at:
            return 0.0
        return (self.finished_at - self.started_at).total_seconds()

    def summary(self) -> str:
        if self.skipped:
            return f"{self.mode} run skipped: another sync run is in progress"
        text = (
            f"{self.mode} run: processed {self.processed} tickets | saved {self.saved} | "
            f"not found {len(self.not_found)} | failed {len(self.failed)} | "
            f"{self.duration_seconds:.1f}s"
        )
        if self.error:
            text += f" | aborted: {self.error}"
        return text


def unique_in_order(ticket_ids: Iterable[int]) -> List[int]:
    seen = set()
    ordered = []
    for ticket_id in ticket_ids:
        if ticket_id not in seen:
            seen.add(ticket_id)
            ordered.append(ticket_id)
    return ordered


class TicketSyncRunner:
    """Runs recent, bulk and single-ticket syncs against one tracker"""

    def __init__(self, fetcher: TracFetcher, enumerator: TicketEnumerator,
                 extractor: TicketExtractor, store: TicketStore, base_url: str,
                 clock: Callable[[], datetime] = utc_now):
        self.fetcher = fetcher
        self.enumerator = enumerator
        self.extractor = extractor
        self.store = store
        self.base_url = base_url.rstrip('/')
        self.clock = clock

    @classmethod
    def from_config(cls, app_config: AppConfig, store: Optional[TicketStore] = None) -> 'TicketSyncRunner':
        scraper = app_config.scraper
        fetcher = TracFetcher.from_config(scraper)
        return cls(
            fetcher=fetcher,
            enumerator=TicketEnumerator(fetcher, scraper.base_url, scraper.report_id),
            extractor=TicketExtractor(scraper.base_url),
            store=store or TicketStore(),
            base_url=scraper.base_url,
        )

    def ticket_url(self, ticket_id: int) -> str:
        return f"{self.base_url}/ticket/{ticket_id}"

    def _new_report(self, mode: str) -> SyncReport:
        return SyncReport(mode=mode, started_at=self.clock())

    def _finish(self, report: SyncReport) -> SyncReport:
        report.finished_at = self.clock()
        if report.aborted:
            logger.error(report.summary())
        else:
            logger.info(report.summary())
        return report

    def ingest_ticket(self, ticket_id: int, report: Optional[SyncReport] = None) -> IngestResult:
        """Fetch, extract, normalize and save one ticket"""
        report = report or self._new_report('ticket')
        report.processed += 1
        url = self.ticket_url(ticket_id)
        try:
            html = self.fetcher.fetch(url)
            raw = self.extractor.extract_ticket(html)
            if raw is None:
                logger.info(f"Ticket {ticket_id} not found or inaccessible, skipping")
                report.not_found.append(ticket_id)
                return IngestResult.NOT_FOUND
            ticket = normalize_ticket(ticket_id, url, raw, self.base_url, ingested_at=self.clock())
            self.store.upsert_ticket(ticket)
        except TracSyncError as e:
            logger.error(f"Failed to sync ticket {ticket_id}: {e}")
            report.failed[ticket_id] = str(e)
            return IngestResult.FAILED
        except Exception as e:
            logger.exception(f"Unexpected error syncing ticket {ticket_id}")
            report.failed[ticket_id] = f"{type(e).__name__}: {e}"
            return IngestResult.FAILED

        report.saved += 1
        return IngestResult.SAVED

    def _ingest_all(self, ticket_ids: List[int], report: SyncReport, total: Optional[int] = None):
        for ticket_id in ticket_ids:
            logger.info(f"[{report.processed + 1}/{total or len(ticket_ids)}] Processing ticket {ticket_id}")
            self.ingest_ticket(ticket_id, report)

    def sync_ticket(self, ticket_id: int) -> SyncReport:
        report = self._new_report('ticket')
        self.ingest_ticket(ticket_id, report)
        return self._finish(report)

    def sync_recent(self, count: int = TracSyncConfig.DEFAULT_RECENT_COUNT) -> SyncReport:
        """Ingest the first listing page of ``count`` tickets"""
        report = self._new_report('recent')
        try:
            ticket_ids = unique_in_order(self.enumerator.list_ticket_ids(1, count))
        except TracSyncError as e:
            report.error = str(e)
            return self._finish(report)
        report.pages = 1
        self._ingest_all(ticket_ids, report)
        return self._finish(report)

    def sync_bulk(self, max_tickets: int = TracSyncConfig.DEFAULT_BULK_COUNT,
                  page_size: int = TracSyncConfig.BULK_PAGE_SIZE) -> SyncReport:
        """
        Page through the listing until ``max_tickets`` ids were seen, a page
        comes back short, or a page comes back empty.

        Every page is requested with the same ``page_size``: the listing
        offsets pages by ``(page - 1) * page_size``, so the last page is
        trimmed locally instead.
        """
        report = self._new_report('bulk')
        total = 0
        page = 1

        while total < max_tickets:
            logger.info(f"Processing page {page} ({page_size} tickets)")
            try:
                ticket_ids = unique_in_order(self.enumerator.list_ticket_ids(page, page_size))
            except TracSyncError as e:
                report.error = str(e)
                break
            report.pages += 1

            if not ticket_ids:
                logger.info("No more tickets found")
                break

            short_page = len(ticket_ids) < page_size
            ticket_ids = ticket_ids[:max_tickets - total]
            self._ingest_all(ticket_ids, report, total=max_tickets)
            total += len(ticket_ids)
            page += 1

            if short_page:
                break

        return self._finish(report)
