from fastapi import APIRouter
from fastapi.responses import PlainTextResponse
from typing import Dict

from slotfinder import __version__

router = APIRouter()


@router.get("/", response_class=PlainTextResponse)
async def root() -> str:
    return f"Slotfinder API v{__version__}"


@router.get("/health")
async def health() -> Dict[str, str]:
    return {"status": "ok"}
