"""Ticket enumerator: turns report listing pages into ticket ids."""

import re
import logging
from typing import List, Optional
from urllib.parse import urlencode

from .trac_fetcher import TracFetcher
from .trac_markup import TicketMarkup, TracMarkup

logger = logging.getLogger(__name__)

TICKET_LINK_PATTERN = re.compile(r'/ticket/(\d+)')


class TicketEnumerator:
    def __init__(self, fetcher: TracFetcher, base_url: str, report_id: int = 40,
                 markup: Optional[TicketMarkup] = None):
        self.fetcher = fetcher
        self.base_url = base_url.rstrip('/')
        self.report_id = report_id
        self.markup = markup or TracMarkup()

    def listing_url(self, page: int, page_size: int) -> str:
        query = urlencode({'asc': 1, 'sort': 'id', 'page': page, 'max': page_size})
        return f"{self.base_url}/report/{self.report_id}?{query}"

    def list_ticket_ids(self, page: int = 1, page_size: int = 100) -> List[int]:
        """
        Ticket ids linked from one listing page, in document order.

        Duplicate links are kept. An empty list means the listing ran out;
        fetch errors propagate to the caller.
        """
        html = self.fetcher.fetch(self.listing_url(page, page_size))
        soup = self.markup.parse(html)

        ticket_ids = []
        for href in self.markup.ticket_links(soup):
            match = TICKET_LINK_PATTERN.search(href)
            if match:
                ticket_ids.append(int(match.group(1)))

        logger.info(f"Found {len(ticket_ids)} tickets on page {page}")
        return ticket_ids
