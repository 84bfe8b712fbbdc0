import logging
from typing import Optional

from .auth import SpotifyAuth, token_set_from_response
from .errors import ReauthorizationRequired, api_error_from_response, error_message_from_body
from .token_manager import CredentialStore, TokenSet

logger = logging.getLogger(__name__)

# Token endpoint statuses meaning the refresh token itself is no longer usable.
_AUTHORIZATION_STATUSES = (400, 401, 403)


class TokenRefresher:
    """Keeps the store's access token usable, with at most one refresh in flight.

    The store lock is held across the refresh exchange: a second caller that
    finds the token expired blocks, then re-checks and reuses the first
    caller's result instead of refreshing again.
    """

    def __init__(self, auth: SpotifyAuth, store: Optional[CredentialStore] = None):
        self.auth = auth
        self.store = store or auth.store

    def ensure_valid(self) -> TokenSet:
        token = self._valid_token()
        if token is not None:
            return token

        with self.store.lock:
            token = self._valid_token()
            if token is not None:
                return token
            return self._refresh_locked()

    def force_refresh(self, rejected_access_token: str) -> TokenSet:
        """Renew after the API rejected ``rejected_access_token``.

        If another caller already replaced that token, its result is returned.
        """

        with self.store.lock:
            current = self.store.current()
            if current is not None and current.access_token != rejected_access_token:
                return current
            return self._refresh_locked()

    def _valid_token(self) -> Optional[TokenSet]:
        with self.store.lock:
            if self.store.is_valid():
                return self.store.current()
        return None

    def _refresh_locked(self) -> TokenSet:
        current = self.store.current()
        if current is None:
            raise ReauthorizationRequired("No Spotify token available. Run the authorization flow first.")
        if not current.refresh_token:
            raise ReauthorizationRequired("Spotify token expired and no refresh_token is available.")

        logger.info("Refreshing Spotify access token")
        resp = self.auth.request_refresh(current.refresh_token)

        if resp.status in _AUTHORIZATION_STATUSES:
            message = error_message_from_body(resp.body, resp.status)
            logger.warning("Spotify refresh token rejected (HTTP %s): %s", resp.status, message)
            self.store.invalidate()
            raise ReauthorizationRequired(f"Refresh token rejected (HTTP {resp.status}): {message}")
        if not 200 <= resp.status < 300:
            raise api_error_from_response(resp.status, resp.headers, resp.body)

        renewed = token_set_from_response(resp, now=self.store.clock())
        return self.store.update_access(
            renewed.access_token,
            renewed.expires_at,
            refresh_token=renewed.refresh_token,
            scopes=renewed.scopes,
        )
