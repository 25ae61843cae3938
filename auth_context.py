from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class AuthIdentity:
    id: str
    email: str = ""
    phone: str = ""
    name: str = ""


_current_identity: ContextVar[Optional[AuthIdentity]] = ContextVar("current_identity", default=None)


class ContextAuth:
    """
    Opaque "current user" accessor used by the orchestrator.
    The identity itself is set by whoever owns the request (server middleware, tests).
    """

    def current_user(self) -> Optional[AuthIdentity]:
        return _current_identity.get()

    def is_authenticated(self) -> bool:
        return _current_identity.get() is not None

    @property
    def mode(self) -> str:
        return "authenticated" if self.is_authenticated() else "none"


@contextmanager
def use_identity(identity: Optional[AuthIdentity]):
    token = _current_identity.set(identity)
    try:
        yield identity
    finally:
        _current_identity.reset(token)


def normalize_phone(value) -> str:
    # compare on the trailing 10 digits so "+91 98xxx" and "98xxx" match
    digits = "".join(ch for ch in str(value or "") if ch.isdigit())
    return digits[-10:]
