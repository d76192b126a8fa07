"""
Dependency injection functions for FastAPI
"""

from fastapi import Depends, Request
from .assistant import ChatAssistant
from .auth import Principal, get_current_principal
from .database import get_db
from .errors import ForbiddenError
from .speech import SpeechSynthesizer
from .translation import TranslatorChain

__all__ = [
    "get_db", "get_current_principal", "get_admin_principal",
    "get_translator", "get_synthesizer", "get_assistant",
]

async def get_admin_principal(
    principal: Principal = Depends(get_current_principal)
) -> Principal:
    """Admin gate; runs after the bearer token has been verified"""
    if not principal.is_admin:
        raise ForbiddenError("Admin access required")
    return principal

# Provider clients are built once in the app lifespan and shared read-only

async def get_translator(request: Request) -> TranslatorChain:
    return request.app.state.translator

async def get_synthesizer(request: Request) -> SpeechSynthesizer:
    return request.app.state.synthesizer

async def get_assistant(request: Request) -> ChatAssistant:
    return request.app.state.assistant
