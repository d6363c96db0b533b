import pytest
from unittest.mock import AsyncMock

from activity_poller.errors import ConfigError, QuotaExceeded, UpstreamError
from activity_poller.pagination import PageTokenIterator, fetch_all

BASE = {"startTime": "2024-01-10T12:00:00.000Z", "endTime": "2024-01-10T12:01:00.000Z",
        "userKey": "all", "applicationName": "login"}


def page(items, token=None):
    response = {"items": items}
    if token:
        response["nextPageToken"] = token
    return response


@pytest.mark.asyncio
async def test_drains_until_no_token():
    fetch_page = AsyncMock(side_effect=[page([1, 2], "p2"), page([3], "p3"), page([4, 5])])

    outcome = await fetch_all(fetch_page, BASE, 3)

    assert fetch_page.await_count == 3
    assert outcome.records == [1, 2, 3, 4, 5]
    assert outcome.continuation_token is None
    assert outcome.pages == 3

    tokens = [call.args[0].get("pageToken") for call in fetch_page.await_args_list]
    assert tokens == [None, "p2", "p3"]


@pytest.mark.asyncio
async def test_budget_exhausted_returns_token():
    fetch_page = AsyncMock(side_effect=[page(["a"], "p2"), page(["b"], "p3")])

    outcome = await fetch_all(fetch_page, BASE, 2)

    assert fetch_page.await_count == 2
    assert outcome.records == ["a", "b"]
    assert outcome.continuation_token == "p3"
    assert not outcome.exhausted


@pytest.mark.asyncio
async def test_resumes_from_start_token():
    fetch_page = AsyncMock(return_value=page(["c"]))

    outcome = await fetch_all(fetch_page, BASE, 5, start_token="p7")

    params = fetch_page.await_args.args[0]
    assert params["pageToken"] == "p7"
    assert params["applicationName"] == "login"
    assert outcome.records == ["c"]
    assert outcome.continuation_token is None


@pytest.mark.asyncio
@pytest.mark.parametrize("budget", [None, 0, -3])
async def test_unset_budget_means_one_page(budget):
    fetch_page = AsyncMock(return_value=page(["x"], "more"))

    outcome = await fetch_all(fetch_page, BASE, budget)

    assert fetch_page.await_count == 1
    assert outcome.continuation_token == "more"


@pytest.mark.asyncio
async def test_quota_on_second_page_discards_items():
    fetch_page = AsyncMock(side_effect=[page(["first"], "p2"), QuotaExceeded()])

    with pytest.raises(QuotaExceeded):
        await fetch_all(fetch_page, BASE, 3)

    assert fetch_page.await_count == 2


@pytest.mark.asyncio
async def test_other_errors_propagate_unchanged():
    error = UpstreamError("HTTP 400", status=400, body={"error": {"message": "bad"}})
    fetch_page = AsyncMock(side_effect=[page(["first"], "p2"), error])

    with pytest.raises(UpstreamError) as exc_info:
        await fetch_all(fetch_page, BASE, 3)

    assert exc_info.value is error


@pytest.mark.asyncio
async def test_missing_items_is_an_empty_page():
    fetch_page = AsyncMock(return_value={"kind": "admin#reports#activities"})

    outcome = await fetch_all(fetch_page, BASE, 2)

    assert outcome.records == []
    assert outcome.continuation_token is None


@pytest.mark.asyncio
async def test_base_params_not_mutated():
    base = dict(BASE)
    fetch_page = AsyncMock(side_effect=[page([], "p2"), page([])])

    await fetch_all(fetch_page, base, 2)

    assert base == BASE


def test_iterator_rejects_non_integer_budget():
    with pytest.raises(ConfigError):
        PageTokenIterator(BASE, "3")


def test_iterator_stops_at_budget():
    pages = PageTokenIterator(BASE, 2)
    first = next(pages)
    pages.advance("t1")
    second = next(pages)
    pages.advance("t2")

    assert "pageToken" not in first
    assert second["pageToken"] == "t1"
    assert list(pages) == []
    assert pages.pending_token == "t2"
