from typing import Any, Awaitable, Callable, Dict, List, Optional

from activity_poller.errors import ConfigError, QuotaExceeded
from activity_poller.logging_conf import logger
from activity_poller.state import FetchOutcome

FetchPage = Callable[[Dict[str, Any]], Awaitable[Dict[str, Any]]]


class PageTokenIterator:
    """
    Yields request parameters for successive pages of a token-paginated endpoint.

    The first request carries the start token (if any); every later one carries
    the token reported by the previous page via ``advance``. Iteration stops when
    the upstream reports no further token or when the page budget is spent.
    """

    def __init__(self, base_params: Dict[str, Any], page_budget: Optional[int] = 1,
                 start_token: Optional[str] = None, token_param: str = "pageToken"):
        """
        Initialize the page iterator.

        Args:
            base_params: Parameters sent with every page request (never mutated)
            page_budget: Maximum number of pages to request; None or 0 means one page
            start_token: Token to resume a partially fetched window
            token_param: Request parameter carrying the page token
        """
        if page_budget is not None and (isinstance(page_budget, bool) or not isinstance(page_budget, int)):
            raise ConfigError(f"page_budget must be an integer, got {page_budget!r}")

        self.base_params = dict(base_params)
        self.page_budget = page_budget if page_budget and page_budget > 0 else 1
        self.token_param = token_param
        self.next_token = start_token
        self.pages = 0
        self.done = False
        logger.debug(f"PageTokenIterator initialized with page_budget={self.page_budget}")

    def __iter__(self):
        return self

    def __next__(self) -> Dict[str, Any]:
        """Return the parameters for the next page request."""
        if self.done or self.pages >= self.page_budget:
            raise StopIteration

        params = dict(self.base_params)
        if self.next_token:
            params[self.token_param] = self.next_token
        else:
            params.pop(self.token_param, None)

        self.pages += 1
        return params

    def advance(self, next_token: Optional[str]) -> None:
        """Record the token reported by the page just fetched."""
        self.next_token = next_token or None
        if self.next_token is None:
            self.done = True

    @property
    def pending_token(self) -> Optional[str]:
        """Token left over when the budget ran out before the last page."""
        return None if self.done else self.next_token


async def fetch_all(fetch_page: FetchPage, base_params: Dict[str, Any], page_budget: Optional[int] = 1,
                    start_token: Optional[str] = None) -> FetchOutcome:
    """
    Drive ``fetch_page`` across pages and accumulate the items.

    Args:
        fetch_page: Awaitable returning ``{"items": [...], "nextPageToken": ...}``
        base_params: Query parameters for every page
        page_budget: Maximum pages to request in this call
        start_token: Token to resume from, if the window is partially fetched

    Returns:
        FetchOutcome with items in upstream order; its token is set if pages remain

    Raises:
        QuotaExceeded: If any page hits the daily quota. Items already collected
            in this call are discarded.
    """
    pages = PageTokenIterator(base_params, page_budget, start_token=start_token)
    accumulator: List[Dict[str, Any]] = []

    for params in pages:
        try:
            response = await fetch_page(params) or {}
        except QuotaExceeded:
            if accumulator:
                logger.warning(f"Discarding {len(accumulator)} items fetched before the quota was exceeded")
            raise

        items = response.get("items") or []
        accumulator.extend(items)
        pages.advance(response.get("nextPageToken"))
        logger.debug(f"Page {pages.pages} returned {len(items)} items")

    outcome = FetchOutcome(records=accumulator, continuation_token=pages.pending_token, pages=pages.pages)
    if outcome.continuation_token:
        logger.info(f"Page budget of {pages.page_budget} reached with more pages pending ({len(accumulator)} items)")
    return outcome
