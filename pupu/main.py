from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from pupu.api import (
    auth_router,
    chat_router,
    health_router,
    keys_router,
    speech_router,
    test_router,
)
from pupu.core.config import get_settings
from pupu.core.keystore import SqliteKeyStore
from pupu.core.logger import get_logger
from pupu.core.trace import TRACE_HEADER, bind_trace_id, set_trace_id

config = get_settings()
logger = get_logger("server")


@asynccontextmanager
async def _lifespan(app: FastAPI):
    settings = get_settings()
    if settings.keystore_backend == "sqlite":
        await SqliteKeyStore(settings.db_path).init()
    logger.info(
        "server starting",
        extra={"keystore": settings.keystore_backend, "providers": settings.provider_key_flags()},
    )
    yield
    logger.info("server stopping")


app = FastAPI(title="PUPU", lifespan=_lifespan)


@app.middleware("http")
async def _trace_middleware(request: Request, call_next):
    tid = bind_trace_id(request.headers.get(TRACE_HEADER))
    try:
        response = await call_next(request)
    finally:
        set_trace_id(None)
    response.headers[TRACE_HEADER] = tid
    return response


# Credentials only make sense with an explicit origin list
_allow_credentials = config.cors_origins != ["*"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.cors_origins,
    allow_credentials=_allow_credentials,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health_router)
app.include_router(auth_router)
app.include_router(chat_router)
app.include_router(speech_router)
app.include_router(test_router)
app.include_router(keys_router)
