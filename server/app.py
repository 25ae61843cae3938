import json
import logging
from typing import Optional

from fastapi import FastAPI, Request, HTTPException
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from auth_context import AuthIdentity, use_identity
from booking_config import configure_logging, load_config
from booking_errors import BookingError, StoreError
from booking_orchestrator import BookingOrchestrator
from persistence.store import build_store
from request_router import RequestRouter

logger = logging.getLogger(__name__)


def identity_from_headers(headers) -> Optional[AuthIdentity]:
    """
    Caller identity as forwarded by the auth gateway in front of this app.
    These headers are trusted; never expose this app without that gateway.
    """
    user_id = (headers.get("x-user-id") or "").strip()
    if not user_id:
        return None
    return AuthIdentity(
        id=user_id,
        email=(headers.get("x-user-email") or "").strip(),
        phone=(headers.get("x-user-phone") or "").strip(),
        name=(headers.get("x-user-name") or "").strip(),
    )


def build_router(config=None) -> RequestRouter:
    config = config or load_config()
    store = build_store(config)
    return RequestRouter(BookingOrchestrator(store, max_attempts=config.inventory_max_attempts))


def create_app(router: Optional[RequestRouter] = None) -> FastAPI:
    """
    HTTP surface for the booking engine; run with
    `uvicorn server.app:create_app --factory`.
    """
    if router is None:
        config = load_config()
        configure_logging(config.log_level)
        router = build_router(config)
        app_owns_store = True
    else:
        app_owns_store = False

    app = FastAPI(title="Valley Booking Engine")
    app.state.router = router
    if app_owns_store:
        app.router.on_shutdown.append(router.orchestrator.store.close)

    @app.exception_handler(BookingError)
    async def booking_error_handler(request: Request, exc: BookingError):
        return JSONResponse(status_code=exc.status, content={"error": exc.code})

    @app.exception_handler(StoreError)
    async def store_error_handler(request: Request, exc: StoreError):
        logger.warning(f"Store error on {request.method} {request.url.path}: {exc.message}")
        return JSONResponse(status_code=502, content={"error": "STORE_ERROR", "message": exc.message})

    @app.get("/health")
    async def health():
        return {"ok": True}

    @app.api_route("/api/{path:path}", methods=["GET", "POST"])
    async def api(path: str, request: Request):
        body = {}
        if request.method == "POST":
            raw = await request.body()
            try:
                body = json.loads(raw) if raw else {}
            except ValueError:
                raise HTTPException(status_code=400, detail="Invalid JSON body")

        query = dict(request.query_params)
        identity = identity_from_headers(request.headers)

        def handle():
            with use_identity(identity):
                return router.handle_request(request.method, f"/api/{path}", body, query)

        # store and remote I/O block, keep them off the event loop
        result = await run_in_threadpool(handle)
        return JSONResponse(content=result)

    return app
