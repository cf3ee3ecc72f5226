import logging

from fastapi import APIRouter

from cloak.vars import PROXY_BASE_PATH, PROXY_PREFIX
from .app_proxy.route import router as proxy_router

router = APIRouter()

logger = logging.getLogger("uvicorn.error")

if PROXY_BASE_PATH:
    logger.info(f"Using PROXY_BASE_PATH: {PROXY_BASE_PATH}")
else:
    logger.info("No PROXY_BASE_PATH set, using root path")
logger.info(f"Proxied targets are addressed as {PROXY_PREFIX}/<token>")

router.include_router(proxy_router)
