import asyncio

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from support_chat.config import settings
from support_chat.database import init_db
from support_chat.errors import (
    ChatError,
    ConnectivityError,
    InvalidInputError,
    NotFoundError,
    PermissionDeniedError,
    SubscriptionTimeoutError,
)
from support_chat.logging_config import get_logger, setup_logging
from support_chat.routers import conversations, health, messages, notifications
from support_chat.services.change_feed import change_feed

setup_logging(settings.log_level)

logger = get_logger("main")

app = FastAPI(
    title="Support Chat API",
    description="Customer support chat: conversations, messages, read receipts and unread badges",
    version="0.1.0",
)

cors_origins = [origin.strip() for origin in settings.cors_allow_origins.split(",") if origin.strip()]
if not cors_origins:
    cors_origins = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(conversations.router)
app.include_router(messages.router)
app.include_router(notifications.router)
app.include_router(health.router)

ERROR_STATUS = [
    (NotFoundError, 404),
    (PermissionDeniedError, 403),
    (InvalidInputError, 422),
    (ConnectivityError, 503),
    (SubscriptionTimeoutError, 504),
]


def status_for(error: ChatError) -> int:
    for error_type, status_code in ERROR_STATUS:
        if isinstance(error, error_type):
            return status_code
    return 500


@app.exception_handler(ChatError)
async def chat_error_handler(request: Request, exc: ChatError) -> JSONResponse:
    status_code = status_for(exc)
    log = logger.error if status_code >= 500 else logger.info
    log(
        "Request failed",
        extra={"context": {"path": request.url.path, "code": exc.code, "error": exc.message, "status": status_code}},
    )
    return JSONResponse(status_code=status_code, content={"detail": exc.message, "code": exc.code})


@app.on_event("startup")
async def startup() -> None:
    init_db()
    await asyncio.to_thread(change_feed.connect)


@app.on_event("shutdown")
async def stop_change_feed() -> None:
    change_feed.shutdown()
    logger.info("Change feed stopped")


@app.get("/health")
async def health_check():
    return {"status": "ok"}
