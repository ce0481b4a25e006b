"""HTTP surface: GitHub webhooks in, workflows out.

The webhook handler does only cheap, synchronous work: verify the signature,
filter the event, derive the idempotency key and submit. The workflow itself
runs in a background task after the response is sent, so GitHub's 10-second
delivery timeout never races a slow generation call.
"""

from __future__ import annotations

import json
import logging
import threading
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Callable

from fastapi import BackgroundTasks, FastAPI, Request
from fastapi.responses import HTMLResponse, PlainTextResponse, RedirectResponse
from fastapi.staticfiles import StaticFiles
from starlette.concurrency import run_in_threadpool

from prvisual_core.billing import BaseBilling
from prvisual_core.errors import BillingError, FilterSkip
from prvisual_core.events import parse_event
from prvisual_core.signature import verify_signature
from prvisual_core.workflow import SubmitResult, WorkflowEngine
from prvisual_store.base import BaseStore

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Hub-Signature-256"
EVENT_HEADER = "X-GitHub-Event"
SUPPORTED_PROVIDERS = ("github",)

_SUCCESS_PAGE = """<!DOCTYPE html>
<html>
<head>
	<meta charset="utf-8">
	<title>PR Visual - You're all set!</title>
	<style>
		body { font-family: system-ui, sans-serif; max-width: 500px; margin: 100px auto; padding: 20px; text-align: center; }
		h1 { font-size: 48px; margin-bottom: 8px; }
		p { color: #666; font-size: 18px; line-height: 1.6; }
	</style>
</head>
<body>
	<h1>&#127912;</h1>
	<h2>You're all set!</h2>
	<p>Open a PR on any repo where you installed PR Visual.<br>You'll get an infographic comment within seconds.</p>
	<p><a href="https://github.com">Go to GitHub &#8594;</a></p>
</body>
</html>"""


def _resume_loop(engine: WorkflowEngine, stop: threading.Event, interval: float) -> None:
    while True:
        try:
            engine.resume_pending()
        except Exception:
            logger.exception("Resume sweep failed")
        if stop.wait(interval):
            return


def create_app(
    config: dict,
    engine: WorkflowEngine,
    billing_factory: Callable[[], BaseBilling],
) -> FastAPI:
    """Build the FastAPI app around an engine.

    ``billing_factory`` supplies a fresh billing client for each checkout
    redirect; the client is closed once the redirect url is known.
    """
    secret = config.get("webhook_secret") or ""
    public_url = config.get("public_url", "").rstrip("/")

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        stop = threading.Event()
        if config.get("resume_on_startup", True):
            # Workflows interrupted by the last shutdown continue from their
            # last checkpoint; they must not delay startup. The sweep repeats
            # so a workflow whose runner died is picked up once its lease expires.
            interval = float(config.get("resume_interval", 300))
            threading.Thread(
                target=_resume_loop, args=(engine, stop, interval), name="prvisual-resume", daemon=True
            ).start()
        yield
        stop.set()

    app = FastAPI(title="PR Visual", lifespan=lifespan)

    @app.get("/health", response_class=PlainTextResponse)
    async def health() -> str:
        return "ok"

    @app.post("/webhooks/{provider}")
    async def webhook(provider: str, request: Request, background_tasks: BackgroundTasks):
        if provider not in SUPPORTED_PROVIDERS:
            return PlainTextResponse("Not found", status_code=404)

        signature = request.headers.get(SIGNATURE_HEADER)
        if not signature:
            return PlainTextResponse("Missing signature", status_code=401)

        body = await request.body()
        if not verify_signature(body, signature, secret):
            logger.warning("Rejected webhook with invalid signature")
            return PlainTextResponse("Invalid signature", status_code=401)

        event_type = request.headers.get(EVENT_HEADER)
        if (event_type or "").lower() != "pull_request":
            return PlainTextResponse("Ignored event")

        try:
            payload = json.loads(body)
        except ValueError:
            logger.error("Invalid JSON payload for %s webhook", provider)
            return PlainTextResponse("Invalid JSON payload", status_code=400)

        try:
            event = parse_event(event_type, payload)
        except FilterSkip as skip:
            return PlainTextResponse(skip.reason)
        except ValueError as e:
            logger.error("Unusable pull_request payload: %s", e)
            return PlainTextResponse(str(e), status_code=400)

        result = await run_in_threadpool(engine.submit_event, event)
        if result == SubmitResult.ALREADY_EXISTS:
            return PlainTextResponse("Workflow already exists")

        background_tasks.add_task(engine.run, event.idempotency_key)
        return PlainTextResponse("Workflow triggered")

    @app.get("/setup")
    async def setup(installation_id: str | None = None):
        if not installation_id:
            return PlainTextResponse("Missing installation_id", status_code=400)

        def checkout() -> str:
            billing = billing_factory()
            try:
                return billing.create_checkout(installation_id, f"{public_url}/success")
            finally:
                billing.close()

        try:
            url = await run_in_threadpool(checkout)
        except BillingError as e:
            logger.error("Checkout for installation %s failed: %s", installation_id, e)
            return PlainTextResponse("Checkout unavailable", status_code=502)
        return RedirectResponse(url, status_code=302)

    @app.get("/success", response_class=HTMLResponse)
    async def success() -> str:
        return _SUCCESS_PAGE

    if config.get("artifact_store", "filesystem") == "filesystem":
        artifact_dir = Path(config.get("artifact_dir", "artifacts"))
        artifact_dir.mkdir(parents=True, exist_ok=True)
        app.mount("/artifacts", StaticFiles(directory=artifact_dir), name="artifacts")

    return app


def build_app(config: dict, store: BaseStore | None = None) -> FastAPI:
    """Wire the production app from configuration: configured store, GitHub
    App publisher, configured billing backend and generator."""
    from prvisual_core.services import (
        app_publisher_factory,
        build_billing,
        build_engine,
        build_pipeline_factory,
        build_store,
    )

    store = store or build_store(config)
    pipeline_factory = build_pipeline_factory(config, store, app_publisher_factory(config))
    engine = build_engine(config, store, pipeline_factory)
    return create_app(config, engine, billing_factory=lambda: build_billing(config))
