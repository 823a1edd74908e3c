"""
Markup strategies for tracker pages.

A strategy knows where things live in the HTML (which selectors, which
attributes). Deciding what the text means is left to the extractor and the
normalizer, so a change to the tracker's templates only touches this module.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional, Tuple
from urllib.parse import parse_qs, urlparse

from bs4 import BeautifulSoup, Tag

from trac_core.ticket_models import RawAttachment

BLANK_LINES = re.compile(r'\n\s*\n+')


@dataclass
class ChangeBlock:
    """One entry of the ticket's change history, as found on the page"""
    author: Optional[str] = None
    timestamp: Optional[str] = None
    content: Optional[str] = None
    change_lines: List[str] = field(default_factory=list)


def element_text(element: Optional[Tag]) -> str:
    """Visible text of an element with surrounding and blank-line noise removed"""
    if element is None:
        return ''
    text = element.get_text()
    return BLANK_LINES.sub('\n\n', text).strip()


def timeline_text(element: Optional[Tag]) -> Optional[str]:
    """
    Best machine-readable timestamp for a date element.

    Prefers the ISO ``from=`` parameter of timeline links, then the title
    attribute, then the element text.
    """
    if element is None:
        return None
    link = element if element.name == 'a' else element.find('a', class_='timeline')
    for candidate in (link, element):
        if candidate is None:
            continue
        href = candidate.get('href')
        if href:
            values = parse_qs(urlparse(href).query).get('from')
            if values:
                return values[0]
        title = candidate.get('title')
        if title:
            return title
    return element_text(element) or None


class TicketMarkup(ABC):
    """Selector strategy for one tracker's page templates"""

    def parse(self, markup: str) -> BeautifulSoup:
        return BeautifulSoup(markup or '', 'html.parser')

    @abstractmethod
    def ticket_links(self, soup: BeautifulSoup) -> List[str]:
        """Every link target on a listing page, in document order"""

    @abstractmethod
    def title(self, soup: BeautifulSoup) -> Optional[str]:
        pass

    @abstractmethod
    def description(self, soup: BeautifulSoup) -> Optional[str]:
        pass

    @abstractmethod
    def properties(self, soup: BeautifulSoup) -> List[Tuple[str, str]]:
        """(label, value) pairs exactly as printed on the page"""

    @abstractmethod
    def change_blocks(self, soup: BeautifulSoup) -> List[ChangeBlock]:
        pass

    @abstractmethod
    def attachments(self, soup: BeautifulSoup) -> List[RawAttachment]:
        """Attachment fields with the link target left unresolved"""


class TracMarkup(TicketMarkup):
    """Selectors for the stock Trac ticket and report templates"""

    def ticket_links(self, soup):
        return [a['href'] for a in soup.find_all('a', href=True)]

    def title(self, soup):
        element = soup.select_one('#ticket .summary')
        text = element_text(element)
        return text or None

    def description(self, soup):
        element = soup.select_one('#ticket .description .searchable') or soup.select_one('#ticket .description')
        text = element_text(element)
        return text or None

    def properties(self, soup):
        rows = soup.select('#ticket .properties tr') or soup.select('.properties tr')
        pairs = []
        for row in rows:
            headers = row.find_all('th')
            values = row.find_all('td')
            for header, value in zip(headers, values):
                pairs.append((element_text(header), element_text(value)))

        # Status line under the summary: "closed defect (bug) (fixed)"
        for css_class, label in (('trac-status', 'Status'), ('trac-type', 'Type'),
                                 ('trac-resolution', 'Resolution')):
            element = soup.select_one(f'#ticket .{css_class}')
            text = element_text(element)
            if label == 'Resolution':
                text = text.strip('()').strip()
            if text:
                pairs.append((label, text))

        # "Opened 3 years ago" / "Last modified 2 weeks ago" header lines
        for line in soup.select('#ticket .date p'):
            stamp = timeline_text(line.find('a', class_='timeline'))
            label = element_text(line).lower()
            if not stamp:
                continue
            if label.startswith('opened'):
                pairs.append(('Opened', stamp))
            elif label.startswith('last modified'):
                pairs.append(('Last modified', stamp))
        return pairs

    def change_blocks(self, soup):
        blocks = []
        for element in soup.select('.change'):
            # Trac nests an h3.change header inside each div.change
            if element.find_parent(class_='change') is not None:
                continue
            author = element.select_one('.author, .trac-author')
            date = (element.select_one('.date') or element.select_one('.time')
                    or element.select_one('a.timeline'))
            content = element.select_one('.comment .searchable') or element.select_one('.comment')
            blocks.append(ChangeBlock(
                author=element_text(author) or None,
                timestamp=timeline_text(date),
                content=element_text(content) or None,
                change_lines=[element_text(li) for li in element.select('.changes li')],
            ))
        return blocks

    def attachments(self, soup):
        found = []
        for element in soup.select('#attachments .attachment'):
            link = element.find('a', href=True)
            found.append(RawAttachment(
                filename=element_text(element.select_one('.trac-field-attachment')) or None,
                size=element_text(element.select_one('.trac-field-size')) or None,
                uploaded_by=element_text(element.select_one('.trac-field-author')) or None,
                uploaded_at=timeline_text(element.select_one('.trac-field-time')),
                description=element_text(element.select_one('.trac-field-description')) or None,
                url=link['href'] if link else None,
            ))
        return found
