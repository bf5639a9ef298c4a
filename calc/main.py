from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .api import router as v1_router
from .errors import (
    CalcError,
    ConditionNotMetError,
    ConditionTooComplexError,
    ExecutionNotImplementedError,
    InvalidStatusTransitionError,
    StateQueryError,
    StrategyAlreadyExistsError,
    StrategyArchivedError,
    StrategyNotActiveError,
    StrategyNotFoundError,
    TriggerNotFoundError,
    UnauthorizedError,
    UnresolvableAssetError,
)
from .logging_config import configure_audit_logging, configure_logging
from .runtime_paths import ensure_runtime_dirs

_LOGGER = logging.getLogger("calc.main")

ERROR_STATUS_CODES: tuple[tuple[type[CalcError], int], ...] = (
    (StrategyNotFoundError, 404),
    (TriggerNotFoundError, 404),
    (UnauthorizedError, 403),
    (InvalidStatusTransitionError, 409),
    (ConditionNotMetError, 409),
    (StrategyAlreadyExistsError, 409),
    (StrategyArchivedError, 409),
    (StrategyNotActiveError, 409),
    (ConditionTooComplexError, 422),
    (UnresolvableAssetError, 422),
    (ExecutionNotImplementedError, 501),
    (StateQueryError, 502),
)


def status_code_for(exc: CalcError) -> int:
    for error_type, status_code in ERROR_STATUS_CODES:
        if isinstance(exc, error_type):
            return status_code
    return 500


async def _calc_error_handler(request: Request, exc: Exception) -> JSONResponse:
    status_code = status_code_for(exc) if isinstance(exc, CalcError) else 500
    if status_code >= 500:
        _LOGGER.warning("request failed path=%s status=%s error=%s", request.url.path, status_code, exc)
    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "error": exc.__class__.__name__},
    )


def create_app() -> FastAPI:
    ensure_runtime_dirs()
    log_path = configure_logging()
    audit_log_path = configure_audit_logging()

    app = FastAPI(
        title="CALC Strategy API",
        version="0.1.0",
        description="Condition-gated strategy automation API.",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(CalcError, _calc_error_handler)
    app.include_router(v1_router)

    @app.on_event("startup")
    def on_startup() -> None:
        logging.getLogger("").info("CALC API startup complete; logs=%s audit=%s", log_path, audit_log_path)

    return app


app = create_app()
