import textwrap
from datetime import datetime, timezone
from unittest.mock import MagicMock

import requests

from trac_core.exceptions import NetworkError
from trac_core.ticket_models import TicketStatus, TicketType
from trac_harvesters.sync_runner import IngestResult, TicketSyncRunner, unique_in_order
from trac_harvesters.ticket_enumerator import TicketEnumerator
from trac_harvesters.ticket_extractor import TicketExtractor

from conftest import (
    BASE_URL,
    FIXED_NOW,
    MISSING_TICKET_PAGE,
    TICKET_PAGE,
    FakeEnumerator,
    FakeFetcher,
    FakeStore,
    listing_page,
)


def ticket_url(ticket_id):
    return f"{BASE_URL}/ticket/{ticket_id}"


def make_runner(fetcher, store, enumerator=None, extractor=None):
    return TicketSyncRunner(
        fetcher=fetcher,
        enumerator=enumerator or TicketEnumerator(fetcher, BASE_URL),
        extractor=extractor or TicketExtractor(BASE_URL),
        store=store,
        base_url=BASE_URL,
        clock=lambda: FIXED_NOW,
    )


def pages_for(ticket_ids, page=TICKET_PAGE):
    return {ticket_url(tid): page for tid in ticket_ids}


NEW_TICKET_PAGE = textwrap.dedent(
    """
    <html><body>
      <div id="ticket">
        <h2><span class="trac-status">new</span> <span class="trac-type">enhancement</span></h2>
        <h1 class="summary searchable">Test Ticket</h1>
        <table class="properties">
          <tr><th>Reported by:</th><td>testuser</td></tr>
        </table>
      </div>
      <div id="attachments">
        <div class="attachment">
          <span class="trac-field-attachment"><a href="/attachment/ticket/7/screen.mov">screen.mov</a></span>
          <span class="trac-field-size">10.5 MB</span>
          <span class="trac-field-author">testuser</span>
        </div>
      </div>
      <div id="changelog">
        <div class="change">
          <h3 class="change">Changed by <span class="trac-author">testuser</span></h3>
          <div class="comment searchable"><p>Test comment</p></div>
        </div>
      </div>
    </body></html>
    """
)


class OffsetEnumerator(FakeEnumerator):
    """Slices one id list the way the report listing offsets its pages"""

    def __init__(self, ticket_ids):
        super().__init__()
        self.ticket_ids = ticket_ids

    def list_ticket_ids(self, page=1, page_size=100):
        self.calls.append((page, page_size))
        start = (page - 1) * page_size
        return self.ticket_ids[start:start + page_size]


class TestIngestTicket:

    def test_ticket_page_is_saved_as_canonical_record(self):
        store = FakeStore()
        runner = make_runner(FakeFetcher(pages_for([12345])), store)

        assert runner.ingest_ticket(12345) == IngestResult.SAVED

        ticket = store.tickets[12345]
        assert ticket.ticket_id == 12345
        assert ticket.url == ticket_url(12345)
        assert ticket.title == 'Test Ticket'
        assert ticket.type == TicketType.DEFECT
        assert ticket.status == TicketStatus.CLOSED
        assert ticket.resolution == 'fixed'
        assert ticket.resolution_date == datetime(2023, 2, 1, 8, 0, tzinfo=timezone.utc)
        assert ticket.created_at == datetime(2023, 1, 15, 10, 30, tzinfo=timezone.utc)
        assert [c.id for c in ticket.comments] == [1, 2]
        assert ticket.comments[0].changes[0].field == 'Owner'
        assert [a.filename for a in ticket.attachments] == ['fix.patch']
        assert ticket.attachments[0].size == 2560
        assert [c.revision for c in ticket.related_changesets] == [54321, 54400]
        assert ticket.related_changesets[0].url == f"{BASE_URL}/changeset/54321"

    def test_new_ticket_with_one_comment_and_large_attachment(self):
        store = FakeStore()
        runner = make_runner(FakeFetcher(pages_for([7], NEW_TICKET_PAGE)), store)

        report = runner.sync_ticket(7)

        assert report.saved == 1
        ticket = store.tickets[7]
        assert ticket.title == 'Test Ticket'
        assert ticket.status == TicketStatus.NEW
        assert ticket.reporter == 'testuser'
        assert len(ticket.comments) == 1
        assert ticket.comments[0].author == 'testuser'
        assert ticket.comments[0].content == 'Test comment'
        assert ticket.attachments[0].size == 11010048
        assert ticket.attachments[0].url == f"{BASE_URL}/attachment/ticket/7/screen.mov"

    def test_page_without_title_is_not_found(self):
        store = FakeStore()
        runner = make_runner(FakeFetcher(pages_for([5], MISSING_TICKET_PAGE)), store)

        report = runner.sync_ticket(5)

        assert report.not_found == [5]
        assert report.saved == 0
        assert store.upserts == []

    def test_http_error_is_recorded_not_raised(self):
        runner = make_runner(FakeFetcher(), FakeStore())

        report = runner.sync_ticket(999999)

        assert report.saved == 0
        assert report.failed[999999] == 'HTTP 404: Not Found'
        assert not report.aborted

    def test_unexpected_error_is_isolated(self):
        extractor = MagicMock()
        extractor.extract_ticket.side_effect = RuntimeError('parser exploded')
        runner = make_runner(FakeFetcher(pages_for([1])), FakeStore(), extractor=extractor)

        assert runner.ingest_ticket(1) == IngestResult.FAILED


class TestSyncRecent:

    def test_recent_end_to_end(self):
        store = FakeStore()
        fetcher = FakeFetcher(pages_for([12345]))
        runner = make_runner(fetcher, store)
        fetcher.pages[runner.enumerator.listing_url(1, 20)] = listing_page([12345])

        report = runner.sync_recent(20)

        assert report.saved == 1
        assert report.processed == 1
        assert store.upserts == [12345]
        # listing once, ticket once even though the row links it twice
        assert fetcher.requests == [runner.enumerator.listing_url(1, 20), ticket_url(12345)]

    def test_one_bad_ticket_does_not_stop_the_run(self):
        store = FakeStore(fail_ids={3})
        fetcher = FakeFetcher(pages_for([1, 3, 4]))
        fetcher.pages[ticket_url(5)] = NetworkError(ticket_url(5), requests.ConnectionError('reset'))
        enumerator = FakeEnumerator({1: [1, 2, 3, 4, 5]})
        runner = make_runner(fetcher, store, enumerator=enumerator)

        report = runner.sync_recent(5)

        assert store.upserts == [1, 4]
        assert sorted(report.failed) == [2, 3, 5]
        assert report.processed == 5
        assert not report.aborted

    def test_listing_failure_aborts(self):
        fetcher = FakeFetcher()
        error = NetworkError(f"{BASE_URL}/report/40", requests.ConnectionError('refused'))
        runner = make_runner(fetcher, FakeStore(), enumerator=FakeEnumerator(error=error))

        report = runner.sync_recent(20)

        assert report.aborted
        assert 'refused' in report.error
        assert report.processed == 0
        assert fetcher.requests == []


class TestSyncBulk:

    def test_stops_on_short_page(self):
        ids = list(range(1, 238))
        enumerator = FakeEnumerator({1: ids[:100], 2: ids[100:200], 3: ids[200:], 4: []})
        store = FakeStore()
        runner = make_runner(FakeFetcher(pages_for(ids)), store, enumerator=enumerator)

        report = runner.sync_bulk(max_tickets=1000, page_size=100)

        assert report.saved == 237
        assert enumerator.calls == [(1, 100), (2, 100), (3, 100)]
        assert report.pages == 3

    def test_stops_on_empty_page(self):
        ids = list(range(1, 201))
        enumerator = FakeEnumerator({1: ids[:100], 2: ids[100:]})
        runner = make_runner(FakeFetcher(pages_for(ids)), FakeStore(), enumerator=enumerator)

        report = runner.sync_bulk(max_tickets=1000, page_size=100)

        assert report.saved == 200
        assert enumerator.calls == [(1, 100), (2, 100), (3, 100)]

    def test_last_page_keeps_page_size_and_trims_locally(self):
        ids = list(range(1, 501))
        enumerator = OffsetEnumerator(ids)
        store = FakeStore()
        runner = make_runner(FakeFetcher(pages_for(ids)), store, enumerator=enumerator)

        report = runner.sync_bulk(max_tickets=150, page_size=100)

        assert enumerator.calls == [(1, 100), (2, 100)]
        assert report.saved == 150
        assert store.upserts == ids[:150]

    def test_listing_failure_mid_run_keeps_saved_tickets(self):
        ids = list(range(1, 101))

        class FlakyEnumerator(FakeEnumerator):
            def list_ticket_ids(self, page=1, page_size=100):
                if page == 2:
                    raise NetworkError('listing', requests.Timeout('slow'))
                return super().list_ticket_ids(page, page_size)

        store = FakeStore()
        runner = make_runner(FakeFetcher(pages_for(ids)), store, enumerator=FlakyEnumerator({1: ids}))

        report = runner.sync_bulk(max_tickets=500, page_size=100)

        assert report.aborted
        assert report.saved == 100
        assert len(store.upserts) == 100


def test_unique_in_order():
    assert unique_in_order([3, 3, 1, 2, 1]) == [3, 1, 2]
