import logging
from enum import Enum
from typing import Any, Dict, Optional, Tuple

import httpx

from auth_context import ContextAuth
from request_router import RequestRouter

logger = logging.getLogger(__name__)


class DispatchState(Enum):
    TRY_REMOTE = "try_remote"
    FALLBACK_LOCAL = "fallback_local"


def next_state(state: DispatchState, remote_ok: bool) -> Optional[DispatchState]:
    """
    Transition after a step; None means the current step's result is final.
    Only a failed remote attempt moves on, and it moves to the local router.
    """
    if state is DispatchState.TRY_REMOTE and not remote_ok:
        return DispatchState.FALLBACK_LOCAL
    return None


def identity_headers(auth: ContextAuth) -> Dict[str, str]:
    identity = auth.current_user()
    if identity is None:
        return {}
    headers = {"X-User-Id": identity.id}
    if identity.phone:
        headers["X-User-Phone"] = identity.phone
    if identity.email:
        headers["X-User-Email"] = identity.email
    if identity.name:
        headers["X-User-Name"] = identity.name
    return headers


class Dispatcher:
    """
    Remote-first, local-fallback request dispatch.
    One remote attempt (no retry, no backoff); any network error or non-2xx
    answer hands the same request to the in-process RequestRouter, whose
    result or BookingError goes straight back to the caller.
    """

    def __init__(self, router: RequestRouter, base_url: str = "", client: Optional[httpx.Client] = None,
                 timeout: float = 10.0, auth: Optional[ContextAuth] = None):
        self.router = router
        self.base_url = (base_url or "").rstrip("/")
        # a client passed in belongs to the caller and is left open by close()
        self._owns_client = client is None
        self.client = client or httpx.Client(timeout=timeout)
        self.auth = auth or ContextAuth()
        self.last_state: Optional[DispatchState] = None

    def close(self):
        if self._owns_client:
            self.client.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    def _attempt_remote(self, method: str, path: str, body: Optional[Dict[str, Any]],
                        query: Optional[Dict[str, Any]]) -> Tuple[bool, Any]:
        if not self.base_url:
            return False, None
        try:
            resp = self.client.request(
                method.upper(),
                self.base_url + path,
                params=query or None,
                json=body if method.upper() != "GET" else None,
                headers=identity_headers(self.auth),
            )
        except httpx.HTTPError as e:
            logger.info(f"Remote {method} {path} unreachable ({e.__class__.__name__}), using local router")
            return False, None
        if not resp.is_success:
            logger.info(f"Remote {method} {path} answered HTTP {resp.status_code}, using local router")
            return False, None
        try:
            return True, resp.json()
        except ValueError:
            logger.info(f"Remote {method} {path} returned a non-JSON body, using local router")
            return False, None

    def dispatch(self, method: str, path: str, body: Optional[Dict[str, Any]] = None,
                 query: Optional[Dict[str, Any]] = None) -> Any:
        state = DispatchState.TRY_REMOTE
        result = None
        while state is not None:
            self.last_state = state
            if state is DispatchState.TRY_REMOTE:
                ok, result = self._attempt_remote(method, path, body, query)
                state = next_state(state, ok)
            else:
                result = self.router.handle_request(method, path, body, query)
                state = next_state(state, True)
        return result

    def get(self, path: str, query: Optional[Dict[str, Any]] = None) -> Any:
        return self.dispatch("GET", path, query=query)

    def post(self, path: str, body: Optional[Dict[str, Any]] = None) -> Any:
        return self.dispatch("POST", path, body=body)
