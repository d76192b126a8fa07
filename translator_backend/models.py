from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, Index
from sqlalchemy.orm import relationship
from datetime import datetime
import re
import uuid
from .database import Base

RECORD_ID = re.compile(r"^[0-9a-f]{32}$")

def new_id() -> str:
    return uuid.uuid4().hex

def is_record_id(value: str) -> bool:
    return bool(RECORD_ID.match(value or ""))

class User(Base):
    __tablename__ = "users"

    id = Column(String(32), primary_key=True, default=new_id)
    name = Column(String(100), nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    hashed_password = Column(String(255), nullable=False)
    role = Column(String(20), nullable=False, default="user")
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

class Translation(Base):
    __tablename__ = "translations"

    id = Column(String(32), primary_key=True, default=new_id)
    user_id = Column(String(32), ForeignKey("users.id"), nullable=False)

    source_text = Column(Text, nullable=False)
    translated_text = Column(Text, nullable=False)
    source_lang = Column(String(20), nullable=False)
    target_lang = Column(String(20), nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    # Composite index for the per-user history query
    __table_args__ = (
        Index('idx_translation_user_created', 'user_id', 'created_at'),
    )

class Conversation(Base):
    __tablename__ = "conversations"

    id = Column(String(32), primary_key=True, default=new_id)
    user_id = Column(String(32), ForeignKey("users.id"), nullable=False, index=True)
    title = Column(String(50), nullable=False, default="")
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow)

    # Insertion order
    messages = relationship(
        "Message",
        back_populates="conversation",
        order_by="Message.seq",
        cascade="all, delete-orphan",
    )

class Message(Base):
    __tablename__ = "messages"

    seq = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String(32), unique=True, nullable=False, default=new_id)
    conversation_id = Column(String(32), ForeignKey("conversations.id"), nullable=False, index=True)
    role = Column(String(20), nullable=False)  # "user" or "assistant"
    content = Column(Text, nullable=False)
    language = Column(String(20), nullable=False, default="")
    created_at = Column(DateTime, default=datetime.utcnow)

    conversation = relationship("Conversation", back_populates="messages")

class Feedback(Base):
    __tablename__ = "feedbacks"

    id = Column(String(32), primary_key=True, default=new_id)
    # Not a foreign key: the reference to a translation is advisory
    translation_id = Column(String(32), nullable=False, index=True)
    user_id = Column(String(32), ForeignKey("users.id"), nullable=False)
    rating = Column(Integer, nullable=False)
    suggested_text = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
