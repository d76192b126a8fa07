from fastapi import FastAPI, APIRouter, Depends, Query, Response, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional
import logging

from .config import get_settings
from .database import get_db, init_db
from .models import User, Translation, Conversation, Message, Feedback, is_record_id
from .schemas import (
    SignupRequest, LoginRequest, AuthResponse, MeResponse,
    TranslateRequest, TranslateResponse, TranslationList,
    TTSRequest,
    FeedbackRequest, FeedbackCreated, FeedbackList,
    ChatRequest, ChatResponse, ConversationDetail, ConversationList,
    AdminStats, UserPage, FeedbackPage,
    DailySeries, RatingDistribution, LanguageBreakdown
)
from .auth import (
    Principal, get_password_hash, verify_password, create_access_token,
    get_current_principal
)
from .dependencies import (
    get_admin_principal, get_translator, get_synthesizer, get_assistant
)
from .errors import (
    AuthError, ConflictError, NotFoundError, ValidationError, ProviderError,
    TranslationUnavailable, SynthesisUnavailable, AssistantUnavailable,
    register_exception_handlers
)
from .repository import Collection, append_messages
from .translation import TranslatorChain, build_translator
from .speech import SpeechSynthesizer, build_synthesizer
from .assistant import ChatAssistant
from . import admin

# Logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

settings = get_settings()

TRANSLATION_HISTORY_LIMIT = 50
TITLE_LENGTH = 50

@asynccontextmanager
async def lifespan(app: FastAPI):
    # A database that cannot be reached aborts startup
    init_db()

    app.state.translator = build_translator(settings)
    app.state.synthesizer = build_synthesizer(settings)
    app.state.assistant = ChatAssistant.from_settings(settings)

    logger.info(f"GROQ_API_KEY present: {bool(settings.GROQ_API_KEY.strip())}")
    logger.info(f"GROQ_MODEL: {settings.GROQ_MODEL}")
    yield

# FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    description="Translation, speech synthesis and medical-information chat for the language translator frontend",
    version="1.0.0",
    lifespan=lifespan
)

register_exception_handlers(app)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.FRONTEND_URL] if settings.FRONTEND_URL else ["*"],
    allow_credentials=bool(settings.FRONTEND_URL),
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["Origin", "Content-Type", "Accept", "Authorization"],
)

api = APIRouter()

# Health check
@app.get("/health")
async def health_check():
    return {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat(),
        "app_name": settings.APP_NAME
    }

# ==================== Authentication Endpoints ====================

@api.post("/auth/signup", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
async def signup(user_data: SignupRequest, db: Session = Depends(get_db)):
    """Register a new user and return a token"""
    users = Collection(db, User)

    # Pre-check only; concurrent signups race to the unique index
    if users.find_one(email=user_data.email):
        raise ConflictError("User already exists")

    user = users.insert_one(
        name=user_data.name,
        email=user_data.email,
        hashed_password=get_password_hash(user_data.password),
        role="user"
    )
    token = create_access_token(user.id, user.role)

    logger.info(f"New user registered: {user.id}")
    return {"user": user, "token": token}

@api.post("/auth/login", response_model=AuthResponse)
async def login(credentials: LoginRequest, db: Session = Depends(get_db)):
    """Login and get access token"""
    user = Collection(db, User).find_one(email=credentials.email)

    if not user or not verify_password(credentials.password, user.hashed_password):
        raise AuthError("Invalid credentials")

    token = create_access_token(user.id, user.role)

    logger.info(f"User logged in: {user.id}")
    return {"user": user, "token": token}

@api.get("/auth/me", response_model=MeResponse)
async def get_current_user_info(
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    """Get current user information"""
    user = Collection(db, User).find_one(id=principal.user_id)
    if user is None:
        raise NotFoundError("User not found")
    return {"user": user}

# ==================== Translation Endpoints ====================

@api.post("/translate", response_model=TranslateResponse)
async def translate_text(
    req: TranslateRequest,
    principal: Principal = Depends(get_current_principal),
    translator: TranslatorChain = Depends(get_translator),
    db: Session = Depends(get_db)
):
    """
    Translate text and record it in the user's history

    - **sourceText**: Text to translate
    - **sourceLang**: Source language code, e.g. "en"
    - **targetLang**: Target language code, e.g. "yo"
    """
    try:
        translated_text = await translator.translate(req.source_text, req.source_lang, req.target_lang)
    except TranslationUnavailable as e:
        logger.error(f"Translation error: {e.message}")
        raise ProviderError(f"Translation failed: {e.message}", status_code=e.status_code) from e

    translation = Collection(db, Translation).insert_one(
        user_id=principal.user_id,
        source_text=req.source_text,
        translated_text=translated_text,
        source_lang=req.source_lang,
        target_lang=req.target_lang
    )
    return {"translation": translation}

@api.get("/translations", response_model=TranslationList)
async def get_translation_history(
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    """Most recent translations of the current user, newest first"""
    translations = Collection(db, Translation).find_many(
        order_by=Translation.created_at.desc(),
        limit=TRANSLATION_HISTORY_LIMIT,
        user_id=principal.user_id
    )
    return {"translations": translations}

# ==================== Speech ====================

@api.post("/tts")
async def text_to_speech(
    req: TTSRequest,
    principal: Principal = Depends(get_current_principal),
    synthesizer: SpeechSynthesizer = Depends(get_synthesizer)
):
    """Synthesize speech; the body is raw audio in the provider's content type"""
    if not req.text.strip():
        raise ValidationError("text is required")

    try:
        audio, content_type = await synthesizer.synthesize(req.text, req.lang)
    except SynthesisUnavailable as e:
        logger.error(f"TTS error: {e.message}")
        raise ProviderError(f"TTS failed: {e.message}", status_code=status.HTTP_502_BAD_GATEWAY) from e

    return Response(content=audio, media_type=content_type, headers={"Cache-Control": "no-store"})

# ==================== Feedback ====================

@api.post("/feedback", response_model=FeedbackCreated, status_code=status.HTTP_201_CREATED)
async def submit_feedback(
    req: FeedbackRequest,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    """Rate a translation, optionally suggesting a better one"""
    if not is_record_id(req.translation_id):
        raise ValidationError("Invalid translation ID")

    feedback = Collection(db, Feedback).insert_one(
        translation_id=req.translation_id,
        user_id=principal.user_id,
        rating=req.rating,
        suggested_text=req.suggested_text or None
    )
    return {"feedback": feedback}

@api.get("/feedback/{translation_id}", response_model=FeedbackList)
async def get_feedback(
    translation_id: str,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    if not is_record_id(translation_id):
        raise ValidationError("Invalid translation ID")

    feedback = Collection(db, Feedback).find_many(
        order_by=Feedback.created_at.desc(),
        translation_id=translation_id
    )
    return {"feedback": feedback}

# ==================== Chat ====================

@api.post("/chat", response_model=ChatResponse)
async def chat(
    req: ChatRequest,
    principal: Principal = Depends(get_current_principal),
    assistant: ChatAssistant = Depends(get_assistant),
    db: Session = Depends(get_db)
):
    """Send a message, starting a new conversation when no id is given"""
    conversations = Collection(db, Conversation)

    if not req.conversation_id:
        conversation = conversations.insert_one(
            user_id=principal.user_id,
            title=req.message[:TITLE_LENGTH]
        )
    else:
        conversation = conversations.find_one(id=req.conversation_id, user_id=principal.user_id)
        if conversation is None:
            raise NotFoundError("Conversation not found")

    user_message = Message(
        role="user",
        content=req.message,
        language=req.language,
        created_at=datetime.utcnow()
    )
    history = list(conversation.messages) + [user_message]

    try:
        reply = await assistant.respond(history, req.message, req.language)
    except AssistantUnavailable as e:
        logger.error(f"Chat error for conversation {conversation.id}: {e.message}")
        raise ProviderError(f"AI service error: {e.message}", status_code=e.status_code) from e

    assistant_message = Message(
        role="assistant",
        content=reply,
        language=req.language,
        created_at=datetime.utcnow()
    )
    conversation = append_messages(db, conversation, [user_message, assistant_message])

    return {
        "conversation_id": conversation.id,
        "message": assistant_message,
        "conversation": conversation
    }

@api.get("/conversations", response_model=ConversationList)
async def get_conversations(
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    conversations = Collection(db, Conversation).find_many(
        order_by=Conversation.updated_at.desc(),
        user_id=principal.user_id
    )
    return {"conversations": conversations}

@api.get("/conversations/{conversation_id}", response_model=ConversationDetail)
async def get_conversation(
    conversation_id: str,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    conversation = Collection(db, Conversation).find_one(id=conversation_id, user_id=principal.user_id)
    if conversation is None:
        raise NotFoundError("Conversation not found")
    return {"conversation": conversation}

# ==================== Admin ====================

@api.get("/admin/stats", response_model=AdminStats)
async def get_admin_stats(
    principal: Principal = Depends(get_admin_principal),
    db: Session = Depends(get_db)
):
    """Headline counts for the dashboard"""
    return {"stats": admin.dashboard_stats(db)}

@api.get("/admin/users", response_model=UserPage)
async def get_all_users(
    page: Optional[str] = Query(None),
    limit: Optional[str] = Query(None),
    q: str = Query(""),
    principal: Principal = Depends(get_admin_principal),
    db: Session = Depends(get_db)
):
    """Users, newest first, optionally filtered by name or email"""
    page_number, page_size = admin.page_params(page, limit)
    return admin.list_users(db, page_number, page_size, q.strip())

@api.get("/admin/feedbacks", response_model=FeedbackPage)
async def get_all_feedbacks(
    page: Optional[str] = Query(None),
    limit: Optional[str] = Query(None),
    created_from: Optional[str] = Query(None, alias="from"),
    created_to: Optional[str] = Query(None, alias="to"),
    principal: Principal = Depends(get_admin_principal),
    db: Session = Depends(get_db)
):
    """Feedback, newest first, optionally bounded by ISO-8601 creation times"""
    page_number, page_size = admin.page_params(page, limit)
    return admin.list_feedbacks(
        db, page_number, page_size,
        admin.parse_timestamp(created_from),
        admin.parse_timestamp(created_to)
    )

@api.get("/admin/analytics/user-growth", response_model=DailySeries)
async def get_user_growth(
    range_: Optional[str] = Query("30d", alias="range"),
    principal: Principal = Depends(get_admin_principal),
    db: Session = Depends(get_db)
):
    return {"series": admin.daily_counts(db, User, admin.parse_range(range_))}

@api.get("/admin/analytics/translation-volume", response_model=DailySeries)
async def get_translation_volume(
    range_: Optional[str] = Query("30d", alias="range"),
    principal: Principal = Depends(get_admin_principal),
    db: Session = Depends(get_db)
):
    return {"series": admin.daily_counts(db, Translation, admin.parse_range(range_))}

@api.get("/admin/analytics/feedback-distribution", response_model=RatingDistribution)
async def get_feedback_distribution(
    range_: Optional[str] = Query("30d", alias="range"),
    principal: Principal = Depends(get_admin_principal),
    db: Session = Depends(get_db)
):
    return {"distribution": admin.rating_distribution(db, admin.parse_range(range_))}

@api.get("/admin/analytics/languages", response_model=LanguageBreakdown)
async def get_translation_languages(
    range_: Optional[str] = Query("30d", alias="range"),
    principal: Principal = Depends(get_admin_principal),
    db: Session = Depends(get_db)
):
    return {"languages": admin.language_breakdown(db, admin.parse_range(range_))}

app.include_router(api, prefix="/api/v1")

# ==================== Root ====================

@app.get("/")
async def root():
    return {
        "message": "Language Translator API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health"
    }

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.PORT)
