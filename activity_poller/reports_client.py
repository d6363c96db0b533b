import httpx, tenacity
from typing import Any, Dict, Optional
from urllib.parse import quote
from activity_poller.errors import AuthError, QuotaExceeded, UpstreamError
from activity_poller.logging_conf import logger
from activity_poller.state import CollectionState, to_iso

BASE_URL = "https://admin.googleapis.com/admin/reports/v1"
QUOTA_REASON = "dailyLimitExceeded"
TRANSIENT_STATUSES = {429, 500, 502, 503, 504}


def build_params(state: CollectionState, user_key: str = "all") -> Dict[str, Any]:
    """Query parameters for the window a state describes (page token handled by the fetcher)."""
    return {
        "startTime": to_iso(state.since),
        "endTime": to_iso(state.until),
        "userKey": user_key,
        "applicationName": state.target,
    }


def error_reasons(body: Any) -> list:
    """Pull ``error.errors[].reason`` values out of a Google API error body."""
    if not isinstance(body, dict):
        return []
    error = body.get("error")
    if not isinstance(error, dict):
        return []
    return [e.get("reason") for e in error.get("errors") or [] if isinstance(e, dict)]


def _is_transient(exc: BaseException) -> bool:
    return isinstance(exc, UpstreamError) and (exc.status is None or exc.status in TRANSIENT_STATUSES)


class ReportsClient:
    """Thin async client for the Admin SDK Reports activities endpoint."""

    def __init__(self,
        token_provider,
        base_url: str = BASE_URL,
        timeout: float = 30.0,
        max_attempts: int = 3,
        retry_wait: Optional[tenacity.wait.wait_base] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None):
        self.token_provider = token_provider
        self.base = base_url.rstrip("/")
        self.max_attempts = max_attempts
        self.retry_wait = retry_wait or tenacity.wait_exponential(multiplier=1, min=2, max=8)
        self.session = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def fetch_page(self, params: Dict[str, Any]) -> Dict[str, Any]:
        """
        Fetch one page of activity events.

        Args:
            params: startTime, endTime, userKey, applicationName and optional pageToken

        Returns:
            Dict with "items" and, when more pages exist, "nextPageToken"

        Raises:
            QuotaExceeded: The daily quota is exhausted (never retried)
            AuthError: Credentials were rejected
            UpstreamError: Any other failure, after retrying transient ones
        """
        query = dict(params)
        user_key = query.pop("userKey", "all")
        application = query.pop("applicationName")
        url = f"{self.base}/activity/users/{quote(user_key, safe='')}/applications/{quote(application, safe='')}"

        @tenacity.retry(stop=tenacity.stop_after_attempt(self.max_attempts),
                        wait=self.retry_wait,
                        retry=tenacity.retry_if_exception(_is_transient),
                        reraise=True)
        async def do():
            token = await self.token_provider.get_token()
            try:
                r = await self.session.get(url, params=query, headers={"Authorization": f"Bearer {token}"})
            except httpx.RequestError as e:
                logger.warning(f"Request error for {application}: {str(e)}")
                raise UpstreamError(f"Request error for GET {url}: {e}")

            if r.is_success:
                return r.json()

            try:
                body = r.json()
            except ValueError:
                body = r.text

            if QUOTA_REASON in error_reasons(body):
                raise QuotaExceeded(f"Daily limit exceeded for {application}", reason=QUOTA_REASON)
            if r.status_code == 401:
                raise AuthError(f"Credentials rejected for {application}: {body}")
            if r.status_code in TRANSIENT_STATUSES:
                logger.warning(f"HTTP {r.status_code} for {application}, retrying with backoff...")
            else:
                logger.error(f"HTTP error {r.status_code} for GET {url}: {body}")
            raise UpstreamError(f"HTTP {r.status_code} for GET {url}", status=r.status_code, body=body)

        page = await do()
        return {"items": page.get("items") or [], "nextPageToken": page.get("nextPageToken")}

    async def close(self):
        """Close the HTTP client session."""
        if self.session:
            await self.session.aclose()

    async def __aenter__(self):
        """Support using with async with."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Close client when exiting context."""
        await self.close()
