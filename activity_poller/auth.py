import asyncio
import json
from typing import List, Optional, Union

import google.auth.exceptions
from google.auth.transport.requests import Request
from google.oauth2.service_account import Credentials

from activity_poller.errors import AuthError
from activity_poller.logging_conf import logger


def parse_scopes(scopes: Union[str, List[str], None]) -> List[str]:
    if scopes is None:
        return []
    if isinstance(scopes, str):
        scopes = scopes.split(",")
    return [s.strip() for s in scopes if s and s.strip()]


def load_credentials(creds_json: Optional[str], scopes: Union[str, List[str], None],
                     subject: Optional[str] = None) -> Credentials:
    """
    Build service account credentials from a JSON key blob.

    Args:
        creds_json: Service account key file contents
        scopes: Comma-separated string or list of OAuth scopes
        subject: Optional user to impersonate via domain-wide delegation

    Returns:
        Scoped google.oauth2 service account Credentials
    """
    if not creds_json:
        raise AuthError("Service account credentials were not found. Set GSUITE_CREDS.")

    try:
        info = json.loads(creds_json)
    except json.JSONDecodeError as e:
        raise AuthError(f"Credentials are not valid JSON: {e}")

    scope_list = parse_scopes(scopes)
    if not scope_list:
        raise AuthError("At least one OAuth scope is required")

    try:
        credentials = Credentials.from_service_account_info(info, scopes=scope_list, subject=subject)
    except (ValueError, KeyError) as e:
        raise AuthError(f"Invalid service account credentials: {e}")

    logger.debug(f"Loaded service account credentials for {info.get('client_email', 'unknown')}")
    return credentials


class TokenProvider:
    """Hands out bearer tokens, refreshing the underlying credentials when they expire."""

    def __init__(self, credentials):
        self.credentials = credentials
        self._lock = asyncio.Lock()

    async def get_token(self) -> str:
        async with self._lock:
            if not self.credentials.valid:
                try:
                    # google-auth refresh is blocking
                    await asyncio.to_thread(self.credentials.refresh, Request())
                except google.auth.exceptions.RefreshError as e:
                    raise AuthError(f"Token refresh failed: {e}")
                logger.debug("Refreshed access token")
            return self.credentials.token
