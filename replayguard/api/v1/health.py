from fastapi import APIRouter

from replayguard.core.config import settings


router = APIRouter()


@router.get("/health")
def health():
    return {
        "status": "ok",
        "app": settings.APP_NAME,
        "env": settings.APP_ENV,
        "nonce_store": settings.NONCE_STORE_BACKEND,
    }
