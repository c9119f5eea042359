"""API router for v1 endpoints."""

from fastapi import APIRouter

from app.api import chat

router = APIRouter()

# Chat-with-context (multi-tier retrieval + streamed completion)
router.include_router(chat.router, tags=["chat"])
