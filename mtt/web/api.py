from __future__ import annotations

import pydantic
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from mtt.common.logger import log
from mtt.core.errors import ConcurrencyError, MttError, ValidationError
from mtt.core.timer_state import ActiveTimer, HistoricalEntry
from mtt.web.models import (
    ActiveSetPayload,
    HealthResponse,
    HistoryPayload,
    MessageResponse,
)


def _status_for(exc: MttError) -> int:
    if isinstance(exc, ValidationError):
        return 413 if exc.oversized else 400
    if isinstance(exc, ConcurrencyError):
        return 503
    return 500


def create_app(gateway) -> FastAPI:
    """Build the HTTP shell over ``gateway``.

    Every route maps 1:1 onto a gateway operation. POST bodies are whole
    replacement documents; nothing here patches a document in place.
    """
    app = FastAPI(title="Multi-Task Time Tracker", version="1.0.0")
    max_payload = gateway.settings.max_payload_bytes

    @app.exception_handler(MttError)
    async def mtt_error_handler(request: Request, exc: MttError):
        code = _status_for(exc)
        if code >= 500:
            log.error(f"{request.method} {request.url.path} failed: {exc.message}")
        else:
            log.warning(f"{request.method} {request.url.path} rejected: {exc.message}")
        return JSONResponse(status_code=code, content={"message": exc.message, "code": exc.code})

    async def read_payload(request: Request, adapter, document: str):
        declared = request.headers.get("content-length")
        if declared is not None and declared.isdigit() and int(declared) > max_payload:
            raise ValidationError("Payload too large", document, oversized=True)
        body = await request.body()
        if len(body) > max_payload:
            raise ValidationError("Payload too large", document, oversized=True)
        try:
            return adapter.validate_json(body)
        except pydantic.ValidationError as exc:
            raise ValidationError(f"Invalid payload: {exc.error_count()} problem(s), first: "
                                  f"{exc.errors()[0]['msg']}", document) from exc

    @app.get("/api/health", response_model=HealthResponse)
    async def health():
        return await run_in_threadpool(gateway.health)

    @app.get("/api/active-state")
    async def read_active_state():
        timers = await run_in_threadpool(gateway.load_active_set)
        return {timer_id: timer.to_dict() for timer_id, timer in timers.items()}

    @app.post("/api/active-state", response_model=MessageResponse)
    async def replace_active_state(request: Request):
        payload = await read_payload(request, ActiveSetPayload, "active-state.json")
        try:
            timers = {timer_id: ActiveTimer.from_dict(model.model_dump()) for timer_id, model in payload.items()}
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"Invalid timer: {exc}", "active-state.json") from exc
        await run_in_threadpool(gateway.save_active_set, timers)
        return {"message": "Active state saved"}

    @app.get("/api/data")
    async def read_history():
        entries = await run_in_threadpool(gateway.load_history)
        return [entry.to_dict() for entry in entries]

    @app.post("/api/data", response_model=MessageResponse)
    async def replace_history(request: Request):
        payload = await read_payload(request, HistoryPayload, "data.json")
        try:
            entries = [HistoricalEntry.from_dict(model.model_dump()) for model in payload]
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"Invalid entry: {exc}", "data.json") from exc
        await run_in_threadpool(gateway.save_history, entries)
        return {"message": "Data saved successfully"}

    return app
