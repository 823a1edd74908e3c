import pytest

from trac_core.exceptions import HttpStatusError
from trac_harvesters.ticket_enumerator import TicketEnumerator

from conftest import BASE_URL, FakeFetcher, listing_page


def make_enumerator(pages):
    fetcher = FakeFetcher(pages)
    return TicketEnumerator(fetcher, BASE_URL, report_id=40), fetcher


def test_listing_url_format():
    enumerator, _ = make_enumerator({})
    assert enumerator.listing_url(3, 100) == (
        f"{BASE_URL}/report/40?asc=1&sort=id&page=3&max=100"
    )


def test_returns_every_ticket_link_in_document_order():
    enumerator, fetcher = make_enumerator({})
    url = enumerator.listing_url(1, 20)
    fetcher.pages[url] = listing_page([101, 205, 150])

    ids = enumerator.list_ticket_ids(1, 20)

    # Each row links the ticket twice (id cell and summary cell)
    assert ids == [101, 101, 205, 205, 150, 150]
    assert fetcher.requests == [url]


def test_ignores_non_ticket_links():
    enumerator, fetcher = make_enumerator({})
    fetcher.pages[enumerator.listing_url(1, 10)] = (
        '<a href="/wiki/Start">Wiki</a><a href="/ticket/7#comment:2">#7</a><a>no href</a>'
    )
    assert enumerator.list_ticket_ids(1, 10) == [7]


def test_empty_listing_returns_empty_list():
    enumerator, fetcher = make_enumerator({})
    fetcher.pages[enumerator.listing_url(9, 100)] = listing_page([])
    assert enumerator.list_ticket_ids(9, 100) == []


def test_fetch_errors_propagate():
    enumerator, fetcher = make_enumerator({})
    fetcher.pages[enumerator.listing_url(1, 100)] = HttpStatusError(503, 'Service Unavailable')

    with pytest.raises(HttpStatusError):
        enumerator.list_ticket_ids(1, 100)
