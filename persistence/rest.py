import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

import httpx

from booking_errors import StoreError, describe_http_error
from .store import ConcurrencyConflict, Filter, RowStore

logger = logging.getLogger(__name__)


def _literal(value) -> str:
    if value is True:
        return "true"
    if value is False:
        return "false"
    return str(value)


def _quoted(value) -> str:
    text = _literal(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{text}"'


def filter_params(filters: Sequence[Filter]) -> List[Tuple[str, str]]:
    """PostgREST query parameters for a list of filters."""
    params = []
    for f in filters:
        if f.op == "eq":
            params.append((f.field, "is.null" if f.value is None else f"eq.{_literal(f.value)}"))
        elif f.op == "in":
            params.append((f.field, "in.(" + ",".join(_quoted(v) for v in f.value) + ")"))
        elif f.op == "available":
            params.append(("or", f"({f.field}.is.null,{f.field}.eq.true)"))
        else:
            raise ValueError(f"unknown filter op {f.op!r}")
    return params


def _from_wire(row: Dict[str, Any]) -> Dict[str, Any]:
    row = dict(row)
    row["version"] = row.get("version") or 0
    return row


class RestRowStore(RowStore):
    """
    Row store backed by a hosted PostgREST endpoint (Supabase).
    """

    def __init__(self, base_url: str, api_key: str, client: Optional[httpx.Client] = None, timeout: float = 10.0):
        self.base_url = base_url.rstrip("/") + "/rest/v1"
        self.headers = {
            "apikey": api_key,
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        # a client passed in belongs to the caller and is left open by close()
        self._owns_client = client is None
        self.client = client or httpx.Client(timeout=timeout)

    def close(self):
        if self._owns_client:
            self.client.close()

    def _url(self, collection: str) -> str:
        return f"{self.base_url}/{collection}"

    def _check(self, resp: httpx.Response, action: str):
        if resp.is_success:
            return
        logger.warning(f"Row store {action} failed with HTTP {resp.status_code}")
        raise StoreError(describe_http_error(resp.status_code, resp.text), resp.status_code)

    def select(self, collection: str, filters: Sequence[Filter] = (), order_by: Optional[str] = None,
               descending: bool = False, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        params = [("select", "*")] + filter_params(filters)
        if order_by:
            params.append(("order", f"{order_by}.{'desc' if descending else 'asc'}"))
        if limit is not None:
            params.append(("limit", str(limit)))
        resp = self.client.get(self._url(collection), params=params, headers=self.headers)
        self._check(resp, f"select {collection}")
        return [_from_wire(r) for r in resp.json() or []]

    def insert(self, collection: str, row: Dict[str, Any]) -> Dict[str, Any]:
        body = dict(row)
        body.setdefault("version", 1)
        headers = {**self.headers, "Prefer": "return=representation"}
        resp = self.client.post(self._url(collection), json=[body], headers=headers)
        self._check(resp, f"insert {collection}")
        data = resp.json() or [body]
        return _from_wire(data[0])

    def update(self, collection: str, row_id: str, patch: Dict[str, Any],
               expected_version: Optional[int] = None) -> Dict[str, Any]:
        if expected_version is None:
            current = self.get(collection, row_id)
            if current is None:
                raise StoreError(describe_http_error(404), 404)
            expected_version = current["version"]

        params = [("id", f"eq.{row_id}")]
        if expected_version == 0:
            # rows written before versioning carry a null version
            params.append(("or", "(version.is.null,version.eq.0)"))
        else:
            params.append(("version", f"eq.{expected_version}"))

        body = {k: v for k, v in patch.items() if k not in ("id", "version")}
        body["version"] = expected_version + 1
        headers = {**self.headers, "Prefer": "return=representation"}
        resp = self.client.patch(self._url(collection), params=params, json=body, headers=headers)
        self._check(resp, f"update {collection}")

        data = resp.json() or []
        if not data:
            raise ConcurrencyConflict(collection, row_id, expected_version)
        return _from_wire(data[0])
