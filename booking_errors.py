import json
from typing import Optional


class BookingError(Exception):
    """
    A booking attempt was rejected.
    The string code (e.g. "SEAT_ALREADY_BOOKED") is the contract with the UI layer,
    so str(err) is always the bare code.
    """

    def __init__(self, code: str, message: Optional[str] = None):
        super().__init__(code)
        self.code = code
        self.message = message or code

    def __str__(self):
        return self.code

    @property
    def status(self) -> int:
        return http_status_for(self.code)


class StoreError(Exception):
    """Row store answered with a non-2xx status."""

    def __init__(self, message: str, status: int = 0):
        super().__init__(message)
        self.message = message
        self.status = status


NOT_FOUND_CODES = {
    "HOTEL_NOT_FOUND",
    "TOUR_NOT_FOUND",
    "ROUTE_NOT_FOUND",
    "BIKE_NOT_FOUND",
    "ORDER_NOT_FOUND",
    "PROVIDER_NOT_FOUND",
}


def http_status_for(code: str) -> int:
    if code in NOT_FOUND_CODES or code.startswith("UNSUPPORTED_ENDPOINT:"):
        return 404
    if code == "AUTH_REQUIRED":
        return 401
    if code in ("AUTH_IDENTITY_MISMATCH", "NOT_YOUR_ORDER"):
        return 403
    if code == "INVENTORY_BUSY":
        return 409
    return 400


def describe_http_error(status: int, body_text: str = "") -> str:
    """
    Turn a failed store/backend response into something safe to show a user.
    5xx bodies are never echoed back.
    """
    if status >= 500:
        return f"Server is temporarily unavailable (HTTP {status})"
    if status in (401, 403):
        return f"You are not authorized (HTTP {status})"
    if status == 404:
        return f"Content not found (HTTP {status})"

    detail = ""
    try:
        parsed = json.loads(body_text) if body_text else None
    except ValueError:
        parsed = None
    if isinstance(parsed, dict):
        detail = str(parsed.get("error") or parsed.get("message") or "").strip()
    return f"{detail or 'Request failed'} (HTTP {status})"
