#main.py
import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.errors import ChainPayError
from db import close_pool
from middleware import RequestContextMiddleware
from routes.admin_fees import router as admin_fees_router
from routes.admin_webhooks import router as admin_webhooks_router
from routes.cctp import router as cctp_router
from routes.health import router as health_router
from routes.transfers import router as transfers_router
from routes.webhooks import router as webhooks_router
from services.observability import configure_logging


configure_logging(os.getenv("LOG_LEVEL", "INFO"))
logger = logging.getLogger("chainpay.api")


@asynccontextmanager
async def lifespan(_app: FastAPI):
    yield
    close_pool()


app = FastAPI(title="ChainPay API", version="1.0.0", lifespan=lifespan)
app.add_middleware(RequestContextMiddleware)

# -----------------------------
# ROUTERS
# -----------------------------

app.include_router(health_router)
app.include_router(transfers_router)
app.include_router(cctp_router)
app.include_router(webhooks_router)
app.include_router(admin_fees_router)
app.include_router(admin_webhooks_router)


@app.exception_handler(ChainPayError)
async def chainpay_error_handler(request: Request, exc: ChainPayError):
    return JSONResponse(
        status_code=exc.http_status,
        content={"detail": exc.to_detail()},
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("unhandled error path=%s", request.url.path)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )
