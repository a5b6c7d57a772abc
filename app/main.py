from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging
import os
from dotenv import load_dotenv

# ----------------------------------------------------
# LOAD .ENV
# ----------------------------------------------------
load_dotenv(override=False)

from app.config import settings
from app.db import engine
from app.errors import (
    BatchValidationError,
    InvalidPayloadError,
    LedgerFrozenError,
    NotFoundError,
    OperationInProgressError,
    StateTransitionError,
)
from app.logging_config import configure_logging
from models import Base

# Routers
from routers import auth_admin, admin_creators, payouts_admin
from routers import creator_portal, checkout
from routers import shopify_webhook

configure_logging(settings.log_level)
logger = logging.getLogger(__name__)

# ----------------------------------------------------
# FASTAPI APP
# ----------------------------------------------------
app = FastAPI(
    title="Creator Commerce Back Office",
    version="1.0.0",
)

# ----------------------------------------------------
# CORS CONFIG
# ----------------------------------------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.options("/{path:path}")
async def options_handler(path: str, request: Request):
    return Response(status_code=204)


# ----------------------------------------------------
# DOMAIN ERRORS -> HTTP (messages shown verbatim to admins)
# ----------------------------------------------------
@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(InvalidPayloadError)
async def invalid_payload_handler(request: Request, exc: InvalidPayloadError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(StateTransitionError)
async def state_transition_handler(request: Request, exc: StateTransitionError):
    return JSONResponse(
        status_code=409,
        content={
            "detail": str(exc),
            "current_state": exc.current_state,
            "target_state": exc.target_state,
        },
    )


@app.exception_handler(BatchValidationError)
async def batch_validation_handler(request: Request, exc: BatchValidationError):
    return JSONResponse(status_code=422, content={"detail": str(exc), "errors": exc.errors})


@app.exception_handler(LedgerFrozenError)
async def ledger_frozen_handler(request: Request, exc: LedgerFrozenError):
    return JSONResponse(status_code=423, content={"detail": str(exc)})


@app.exception_handler(OperationInProgressError)
async def in_progress_handler(request: Request, exc: OperationInProgressError):
    return JSONResponse(status_code=503, content={"detail": str(exc)}, headers={"Retry-After": "30"})


# ----------------------------------------------------
# DB INIT (DEV ONLY, migrations otherwise)
# ----------------------------------------------------
if os.getenv("ENV", "dev") == "dev" and os.getenv("DB_AUTO_CREATE") == "1":
    Base.metadata.create_all(bind=engine)

# ----------------------------------------------------
# ROUTERS
# ----------------------------------------------------
app.include_router(auth_admin.router)
app.include_router(admin_creators.router)
app.include_router(payouts_admin.router)

app.include_router(creator_portal.router)
app.include_router(checkout.router)

app.include_router(shopify_webhook.router)


@app.get("/")
def root():
    return {"message": "Creator back office running"}


@app.get("/health")
def health():
    return {"ok": True}
