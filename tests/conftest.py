import textwrap
from contextlib import contextmanager
from datetime import datetime, timezone

from trac_core.exceptions import HttpStatusError, PersistenceError

BASE_URL = 'https://trac.example.org'

FIXED_NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


TICKET_PAGE = textwrap.dedent(
    """
    <html><body>
      <div id="ticket">
        <div class="date">
          <p>Opened <a class="timeline" href="/timeline?from=2023-01-15T10%3A30%3A00Z&amp;precision=second"
                       title="See timeline at Jan 15, 2023, 10:30:00 AM">17 months ago</a></p>
          <p>Last modified <a class="timeline" href="/timeline?from=2023-02-01T08%3A00%3A00Z&amp;precision=second"
                              title="See timeline at Feb 1, 2023, 8:00:00 AM">16 months ago</a></p>
        </div>
        <h2>
          <a href="/ticket/12345" class="trac-id">#12345</a>
          <span class="trac-status">closed</span>
          <span class="trac-type">defect (bug)</span>
          <span class="trac-resolution">(fixed)</span>
        </h2>
        <h1 class="summary searchable">Test Ticket</h1>
        <table class="properties">
          <tr>
            <th id="h_reporter">Reported by:</th><td headers="h_reporter">alice</td>
            <th id="h_owner">Owned by:</th><td headers="h_owner">bob</td>
          </tr>
          <tr>
            <th>Milestone:</th><td>6.5</td>
            <th>Priority:</th><td>major</td>
          </tr>
          <tr>
            <th>Severity:</th><td>normal</td>
            <th>Version:</th><td>6.4</td>
          </tr>
          <tr>
            <th>Component:</th><td>Editor</td>
            <th>Keywords:</th><td>has-patch needs-testing</td>
          </tr>
          <tr>
            <th>Focuses:</th><td>accessibility, javascript</td>
            <th>Cc:</th><td></td>
          </tr>
        </table>
        <div class="description">
          <h3>Description</h3>
          <div class="searchable"><p>The editor breaks on paste. Regressed in [54321].</p></div>
        </div>
      </div>

      <div id="attachments">
        <dl class="attachments">
          <div class="attachment">
            <span class="trac-field-attachment"><a href="/attachment/ticket/12345/fix.patch">fix.patch</a></span>
            <span class="trac-field-size">2.5 KB</span>
            <span class="trac-field-author">alice</span>
            <span class="trac-field-time"><a class="timeline" href="/timeline?from=2023-01-16T09%3A00%3A00Z"
                                             title="See timeline at Jan 16, 2023">ago</a></span>
            <span class="trac-field-description">First pass</span>
          </div>
          <div class="attachment">
            <span class="trac-field-attachment"><a href="/attachment/ticket/12345/orphan.png">orphan.png</a></span>
            <span class="trac-field-size">10 KB</span>
          </div>
        </dl>
      </div>

      <div id="changelog">
        <div class="change" id="trac-change-1">
          <h3 class="change">
            Changed <a class="timeline" href="/timeline?from=2023-01-16T09%3A00%3A00Z" title="x">ago</a>
            by <span class="trac-author">bob</span>
          </h3>
          <ul class="changes">
            <li><strong>Owner</strong> changed from <em>alice</em> to <em>bob</em></li>
          </ul>
          <div class="comment searchable"><p>Taking this one.</p></div>
        </div>
        <div class="change" id="trac-change-2">
          <h3 class="change">
            Changed <a class="timeline" href="/timeline?from=2023-01-20T11%3A00%3A00Z" title="x">ago</a>
            by <span class="trac-author">carol</span>
          </h3>
          <div class="comment searchable"></div>
        </div>
        <div class="change" id="trac-change-3">
          <h3 class="change">
            Changed <a class="timeline" href="/timeline?from=2023-02-01T08%3A00%3A00Z" title="x">ago</a>
            by <span class="trac-author">bob</span>
          </h3>
          <ul class="changes">
            <li><strong>Status</strong> changed from <em>new</em> to <em>closed</em></li>
            <li><strong>Resolution</strong> set to <em>fixed</em></li>
          </ul>
          <div class="comment searchable"><p>In r54400 and changeset:54321.</p></div>
        </div>
      </div>
    </body></html>
    """
)

MISSING_TICKET_PAGE = "<html><body><div id='content'>No such ticket</div></body></html>"


def listing_page(ticket_ids):
    rows = "\n".join(
        f'<tr><td class="ticket"><a href="/ticket/{tid}">#{tid}</a></td>'
        f'<td class="summary"><a href="/ticket/{tid}">Ticket {tid}</a></td></tr>'
        for tid in ticket_ids
    )
    return f"<html><body><a href='/wiki'>Wiki</a><table class='listing tickets'>{rows}</table></body></html>"


class FakeFetcher:
    """Serves canned pages by URL; anything unknown is a 404"""

    def __init__(self, pages=None):
        self.pages = dict(pages or {})
        self.requests = []

    def fetch(self, url):
        self.requests.append(url)
        page = self.pages.get(url)
        if isinstance(page, Exception):
            raise page
        if page is None:
            raise HttpStatusError(404, 'Not Found', url=url)
        return page


class FakeEnumerator:
    """Returns preset id lists per page"""

    def __init__(self, pages=None, error=None):
        self.pages = pages or {}
        self.error = error
        self.calls = []

    def list_ticket_ids(self, page=1, page_size=100):
        self.calls.append((page, page_size))
        if self.error:
            raise self.error
        return list(self.pages.get(page, []))


class FakeStore:
    def __init__(self, fail_ids=()):
        self.tickets = {}
        self.upserts = []
        self.fail_ids = set(fail_ids)
        self.schema_created = False
        self.lock_available = True

    def ensure_schema(self):
        self.schema_created = True

    def upsert_ticket(self, ticket):
        if ticket.ticket_id in self.fail_ids:
            raise PersistenceError(f"Failed to save ticket {ticket.ticket_id}", ticket_id=ticket.ticket_id)
        self.upserts.append(ticket.ticket_id)
        self.tickets[ticket.ticket_id] = ticket

    @contextmanager
    def sync_lock(self, name='trac_ticket_sync'):
        yield self.lock_available
