import dataclasses
import json
import logging
import os
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, FrozenSet, Iterable, Optional

from .errors import InsufficientScope

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_CACHE_PATH = os.path.join("data", "spotify_tokens.json")
DEFAULT_SAFETY_MARGIN = 60.0


def parse_scopes(scope: Any) -> FrozenSet[str]:
    if not scope:
        return frozenset()
    if isinstance(scope, str):
        return frozenset(scope.split())
    return frozenset(str(s).strip() for s in scope if str(s).strip())


@dataclass(frozen=True)
class TokenSet:
    """Access/refresh token pair with an absolute expiry (epoch seconds)."""

    access_token: str
    expires_at: float
    refresh_token: Optional[str] = None
    scopes: FrozenSet[str] = field(default_factory=frozenset)
    token_type: str = "Bearer"

    @staticmethod
    def from_token_response(payload: Dict[str, Any], *, now: Optional[float] = None) -> "TokenSet":
        """Convert a token endpoint response into a TokenSet.

        Spotify returns:
        - access_token
        - token_type
        - expires_in (seconds)
        - refresh_token (optional on refresh)
        - scope (space-delimited string)

        ``expires_at`` is issue time plus ``expires_in``. Raises KeyError/ValueError
        when the payload lacks an access token or lifetime.
        """

        access_token = payload["access_token"]
        if not isinstance(access_token, str) or not access_token:
            raise ValueError("token response carried an empty access_token")

        now_ts = float(time.time() if now is None else now)
        refresh_token = payload.get("refresh_token")

        return TokenSet(
            access_token=access_token,
            expires_at=now_ts + float(payload["expires_in"]),
            refresh_token=str(refresh_token) if refresh_token else None,
            scopes=parse_scopes(payload.get("scope")),
            token_type=str(payload.get("token_type") or "Bearer"),
        )

    def require_scopes(self, *required: str) -> None:
        missing = [s for s in required if s not in self.scopes]
        if missing:
            raise InsufficientScope(missing)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "access_token": self.access_token,
            "token_type": self.token_type,
            "expires_at": self.expires_at,
            "refresh_token": self.refresh_token,
            "scope": " ".join(sorted(self.scopes)),
        }

    def __repr__(self) -> str:
        return (
            f"TokenSet(expires_at={self.expires_at!r}, has_refresh_token={self.refresh_token is not None}, "
            f"scopes={sorted(self.scopes)!r})"
        )


class TokenCache:
    """Optional JSON-file persistence for a TokenSet."""

    def __init__(self, *, cache_path: str = DEFAULT_TOKEN_CACHE_PATH):
        self.cache_path = cache_path

    def ensure_cache_dir(self) -> None:
        directory = os.path.dirname(self.cache_path)
        if directory:
            os.makedirs(directory, exist_ok=True)

    def load(self) -> Optional[TokenSet]:
        """Load the cached token if present; unreadable caches load as nothing."""

        if not os.path.exists(self.cache_path):
            return None

        try:
            with open(self.cache_path, "r", encoding="utf-8") as f:
                data = json.load(f)
            return TokenSet(
                access_token=str(data["access_token"]),
                token_type=str(data.get("token_type") or "Bearer"),
                expires_at=float(data["expires_at"]),
                refresh_token=data.get("refresh_token") or None,
                scopes=parse_scopes(data.get("scope")),
            )
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning("Ignoring unreadable token cache %s: %s", self.cache_path, e)
            return None

    def save(self, token: TokenSet) -> bool:
        try:
            self.ensure_cache_dir()
            with open(self.cache_path, "w", encoding="utf-8") as f:
                json.dump(token.to_dict(), f, indent=2)
            os.chmod(self.cache_path, 0o600)
            return True
        except OSError as e:
            logger.warning("Could not write token cache %s: %s", self.cache_path, e)
            return False

    def clear(self) -> bool:
        try:
            if os.path.exists(self.cache_path):
                os.remove(self.cache_path)
            return True
        except OSError as e:
            logger.warning("Could not remove token cache %s: %s", self.cache_path, e)
            return False


class CredentialStore:
    """Owns the live TokenSet.

    Lifecycle: constructed empty, installed once per authorization, refreshed any
    number of times, invalidated when renewal is no longer possible. ``lock`` is
    reentrant and serializes every read and write; the refresher holds it for
    the duration of a refresh so concurrent callers wait for one result.
    """

    def __init__(
        self,
        *,
        safety_margin: float = DEFAULT_SAFETY_MARGIN,
        clock: Callable[[], float] = time.time,
        cache: Optional[TokenCache] = None,
    ):
        self.safety_margin = float(safety_margin)
        self.clock = clock
        self.cache = cache
        self.lock = threading.RLock()
        self._token: Optional[TokenSet] = None

    @classmethod
    def from_cache(cls, cache: TokenCache, **kwargs) -> "CredentialStore":
        store = cls(cache=cache, **kwargs)
        token = cache.load()
        if token is not None:
            with store.lock:
                store._token = token
        return store

    def current(self) -> Optional[TokenSet]:
        with self.lock:
            return self._token

    def install(self, token: TokenSet) -> None:
        with self.lock:
            self._token = token
            self._persist()

    def is_valid(self, now: Optional[float] = None) -> bool:
        with self.lock:
            if self._token is None:
                return False
            now = self.clock() if now is None else now
            return now < self._token.expires_at - self.safety_margin

    def update_access(
        self,
        access_token: str,
        expires_at: float,
        *,
        refresh_token: Optional[str] = None,
        scopes: Optional[Iterable[str]] = None,
    ) -> TokenSet:
        """Swap in a renewed access token; the refresh token survives unless replaced."""

        with self.lock:
            if self._token is None:
                raise RuntimeError("No token installed; nothing to update")
            changes: Dict[str, Any] = {"access_token": access_token, "expires_at": float(expires_at)}
            if refresh_token:
                changes["refresh_token"] = refresh_token
            if scopes:
                changes["scopes"] = frozenset(scopes)
            self._token = dataclasses.replace(self._token, **changes)
            self._persist()
            return self._token

    def invalidate(self) -> None:
        with self.lock:
            self._token = None
            if self.cache is not None:
                self.cache.clear()

    def has_scopes(self, *required: str) -> bool:
        with self.lock:
            granted = self._token.scopes if self._token else frozenset()
        return all(s in granted for s in required)

    def require_scopes(self, *required: str) -> None:
        with self.lock:
            token = self._token
        if token is None:
            if required:
                raise InsufficientScope(required)
            return
        token.require_scopes(*required)

    def _persist(self) -> None:
        if self.cache is not None and self._token is not None:
            self.cache.save(self._token)
