"""Public HTTP and WebSocket surface.

`create_app` builds the ledger store, payment processor client, fanout,
provisioning service and webhook reconciler once, in that order, and wires
them into the routes. Run with
`uvicorn gamecloud.services.api_gateway.main:create_app --factory`.
"""

from contextlib import asynccontextmanager
from time import perf_counter
from uuid import uuid4

from fastapi import FastAPI, Header, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from gamecloud.common.config import CommonSettings, settings
from gamecloud.common.db import make_engine, make_session_factory
from gamecloud.common.errors import (
    AuthenticationError,
    DuplicateError,
    PaymentIntentNotBound,
    StoreUnavailable,
    UpstreamPaymentError,
    ValidationError,
)
from gamecloud.common.logging import configure_logging, logger, trace_id_ctx
from gamecloud.common.metrics import http_request_duration_seconds, http_requests_total, metrics_response
from gamecloud.common.startup import log_startup_config
from gamecloud.common.tracing import instrument_app, setup_tracing
from gamecloud.services.fanout.service import StatusFanout
from gamecloud.services.ledger.store import LedgerStore
from gamecloud.services.provisioning.processor import PaymentProcessor, StripePaymentProcessor
from gamecloud.services.provisioning.schemas import (
    PaymentView,
    ServerCreatedResponse,
    ServerRequest,
    ServerSnapshotResponse,
    ServerView,
    TransitionView,
)
from gamecloud.services.provisioning.service import ProvisioningService
from gamecloud.services.reconciler.service import WebhookReconciler


def _register_error_handlers(app: FastAPI) -> None:
    """Map domain errors onto HTTP status codes."""

    @app.exception_handler(ValidationError)
    async def validation_error(_: Request, exc: ValidationError):
        return JSONResponse(status_code=422, content={"detail": "validation failed", "fields": exc.fields})

    @app.exception_handler(RequestValidationError)
    async def request_validation_error(_: Request, exc: RequestValidationError):
        # Bodies that are not a JSON object never reach the service checks.
        fields = {
            ".".join(str(part) for part in err["loc"][1:]) or "body": err["msg"]
            for err in exc.errors()
        }
        return JSONResponse(status_code=422, content={"detail": "validation failed", "fields": fields})

    @app.exception_handler(AuthenticationError)
    async def authentication_error(_: Request, exc: AuthenticationError):
        # Non-2xx so the processor keeps the event and redelivers it.
        return JSONResponse(status_code=400, content={"detail": "invalid signature"})

    @app.exception_handler(UpstreamPaymentError)
    async def upstream_error(_: Request, exc: UpstreamPaymentError):
        return JSONResponse(status_code=502, content={"detail": str(exc)})

    @app.exception_handler(StoreUnavailable)
    async def store_unavailable(_: Request, exc: StoreUnavailable):
        logger.error("store unavailable: %s", exc)
        return JSONResponse(status_code=503, content={"detail": "temporarily unavailable"})

    @app.exception_handler(PaymentIntentNotBound)
    async def intent_not_bound(_: Request, exc: PaymentIntentNotBound):
        logger.warning("%s", exc)
        return JSONResponse(status_code=503, content={"detail": "payment intent not bound yet"})

    @app.exception_handler(DuplicateError)
    async def duplicate_error(_: Request, exc: DuplicateError):
        return JSONResponse(status_code=409, content={"detail": str(exc)})


def create_app(
    config: CommonSettings | None = None,
    session_factory=None,
    processor: PaymentProcessor | None = None,
) -> FastAPI:
    """Build the application and its collaborators."""

    config = config or settings
    configure_logging()
    if config.otel_enabled:
        setup_tracing(config.service_name, config.otel_exporter_otlp_endpoint)
    log_startup_config(
        config,
        [
            "postgres_dsn",
            "stripe_api_key",
            "stripe_webhook_secret",
            "processor_timeout_seconds",
            "currency",
            "games",
            "regions",
        ],
    )

    engine = None
    if session_factory is None:
        engine = make_engine(config.postgres_dsn)
        session_factory = make_session_factory(engine)
    store = LedgerStore(session_factory)
    processor = processor or StripePaymentProcessor(config.stripe_api_key)
    fanout = StatusFanout(store, service_name=config.service_name)
    provisioning = ProvisioningService(store, processor, config)
    reconciler = WebhookReconciler(store, fanout, config)

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        yield
        if engine is not None:
            engine.dispose()

    app = FastAPI(title="GameCloud Provisioning", lifespan=lifespan)
    app.state.store = store
    app.state.fanout = fanout
    app.state.provisioning = provisioning
    app.state.reconciler = reconciler
    instrument_app(app)
    _register_error_handlers(app)

    @app.middleware("http")
    async def metrics_middleware(request: Request, call_next):
        """Record request count and latency for every HTTP call."""

        start = perf_counter()
        route = request.url.path
        method = request.method
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            route_obj = request.scope.get("route")
            if route_obj is not None and getattr(route_obj, "path", None):
                route = route_obj.path
            return response
        finally:
            elapsed = max(0.0, perf_counter() - start)
            http_request_duration_seconds.labels(
                service=config.service_name,
                route=route,
                method=method,
            ).observe(elapsed)
            http_requests_total.labels(
                service=config.service_name,
                route=route,
                method=method,
                status_code=str(status_code),
            ).inc()

    @app.post("/servers", response_model=ServerCreatedResponse, status_code=201)
    async def create_server(req: ServerRequest, x_trace_id: str | None = Header(default=None)):
        """Create a server in `installing` and return the client payment token."""

        trace_id_ctx.set(x_trace_id or str(uuid4()))
        result = await provisioning.request_server(req.user_id, req.game, req.region, req.tier)
        return ServerCreatedResponse(
            server=ServerView.model_validate(result.server, from_attributes=True),
            payment=PaymentView.model_validate(result.payment, from_attributes=True),
            client_token=result.client_token,
        )

    @app.get("/servers/{server_id}", response_model=ServerSnapshotResponse)
    def get_server(server_id: str):
        """On-demand snapshot of one server, its payment and transition history."""

        server = store.get_server(server_id)
        if server is None:
            raise HTTPException(status_code=404, detail="server not found")
        payment = store.get_payment_for_server(server_id)
        history = store.list_transitions(payment.payment_id) if payment is not None else []
        return ServerSnapshotResponse(
            server=ServerView.model_validate(server, from_attributes=True),
            payment=PaymentView.model_validate(payment, from_attributes=True) if payment else None,
            history=[TransitionView.model_validate(t, from_attributes=True) for t in history],
        )

    @app.post("/webhooks/stripe")
    async def stripe_webhook(request: Request, stripe_signature: str | None = Header(default=None)):
        """Consume one processor event; any 2xx tells the processor not to redeliver."""

        payload = await request.body()
        result = await reconciler.handle(payload, stripe_signature)
        return {"received": True, "outcome": result.outcome}

    @app.websocket("/ws/servers")
    async def server_status_stream(websocket: WebSocket):
        """Live status feed; send `{"server_id": ...}` to subscribe."""

        await websocket.accept()
        try:
            while True:
                try:
                    message = await websocket.receive_json()
                except ValueError:
                    await websocket.send_json({"type": "error", "detail": "invalid json"})
                    continue
                server_id = message.get("server_id") if isinstance(message, dict) else None
                if not isinstance(server_id, str) or not server_id:
                    await websocket.send_json({"type": "error", "detail": "server_id required"})
                    continue
                if message.get("action") == "unsubscribe":
                    await fanout.unsubscribe(server_id, websocket)
                else:
                    await fanout.subscribe(server_id, websocket)
        except WebSocketDisconnect:
            pass
        finally:
            await fanout.drop_connection(websocket)

    @app.get("/metrics")
    def metrics():
        """Prometheus scrape endpoint."""

        return metrics_response()

    @app.get("/health")
    def health():
        """Container health probe endpoint."""

        return {"ok": True}

    return app
