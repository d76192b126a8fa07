from pydantic import BaseModel, EmailStr, Field
from pydantic.alias_generators import to_camel
from datetime import datetime
from typing import Optional, List

class CamelModel(BaseModel):
    class Config:
        from_attributes = True
        alias_generator = to_camel
        populate_by_name = True

# User schemas
class SignupRequest(CamelModel):
    name: str = Field(..., min_length=2, max_length=100)
    email: EmailStr
    password: str = Field(..., min_length=6)

class LoginRequest(CamelModel):
    email: EmailStr
    password: str = Field(..., min_length=1)

class UserResponse(CamelModel):
    id: str
    name: str
    email: str
    role: str
    created_at: datetime
    updated_at: Optional[datetime] = None

class AuthResponse(CamelModel):
    user: UserResponse
    token: str

class MeResponse(CamelModel):
    user: UserResponse

# Translation schemas
class TranslateRequest(CamelModel):
    source_text: str = Field(..., min_length=1)
    source_lang: str = Field(..., min_length=1, max_length=20)
    target_lang: str = Field(..., min_length=1, max_length=20)

class TranslationResponse(CamelModel):
    id: str
    user_id: str
    source_text: str
    translated_text: str
    source_lang: str
    target_lang: str
    created_at: datetime

class TranslateResponse(CamelModel):
    translation: TranslationResponse

class TranslationList(CamelModel):
    translations: List[TranslationResponse]

# Speech
class TTSRequest(CamelModel):
    text: str = ""
    lang: str = ""

# Feedback schemas
class FeedbackRequest(CamelModel):
    translation_id: str = Field(..., min_length=1)
    rating: int = Field(..., ge=1, le=5, strict=True)
    suggested_text: Optional[str] = None

class FeedbackResponse(CamelModel):
    id: str
    translation_id: str
    user_id: str
    rating: int
    suggested_text: Optional[str] = None
    created_at: datetime

class FeedbackCreated(CamelModel):
    feedback: FeedbackResponse

class FeedbackList(CamelModel):
    feedback: List[FeedbackResponse]

# Chat schemas
class ChatRequest(CamelModel):
    conversation_id: Optional[str] = None
    message: str = Field(..., min_length=1)
    language: str = Field(..., min_length=1, max_length=20)

class MessageResponse(CamelModel):
    id: str
    role: str
    content: str
    language: str
    created_at: datetime

class ConversationResponse(CamelModel):
    id: str
    user_id: str
    title: str
    messages: List[MessageResponse]
    created_at: datetime
    updated_at: datetime

class ChatResponse(CamelModel):
    conversation_id: str
    message: MessageResponse
    conversation: ConversationResponse

class ConversationDetail(CamelModel):
    conversation: ConversationResponse

class ConversationList(CamelModel):
    conversations: List[ConversationResponse]

# Admin schemas
class DashboardStats(CamelModel):
    total_users: int
    active_users: int
    total_translations: int
    total_conversations: int
    total_feedbacks: int
    avg_feedback_rating: float

class AdminStats(CamelModel):
    stats: DashboardStats

class UserPage(CamelModel):
    users: List[UserResponse]
    page: int
    limit: int
    total: int
    total_pages: int

class FeedbackPage(CamelModel):
    feedbacks: List[FeedbackResponse]
    page: int
    limit: int
    total: int
    total_pages: int

class SeriesPoint(CamelModel):
    date: str
    count: int

class DailySeries(CamelModel):
    series: List[SeriesPoint]

class RatingCount(CamelModel):
    rating: int
    count: int

class RatingDistribution(CamelModel):
    distribution: List[RatingCount]

class LanguageCount(CamelModel):
    language: str
    count: int

class LanguageBreakdown(CamelModel):
    languages: List[LanguageCount]
