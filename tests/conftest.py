import os

# Settings are read once, so the test environment has to be in place first
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["USE_ESPEAK"] = "false"
os.environ["ELEVENLABS_API_KEY"] = ""
os.environ["HF_API_TOKEN"] = ""
os.environ["GROQ_API_KEY"] = ""

import pytest
from fastapi.testclient import TestClient

from translator_backend.assistant import ChatAssistant
from translator_backend.database import Base, SessionLocal, engine
from translator_backend.dependencies import get_assistant, get_synthesizer, get_translator
from translator_backend.errors import AssistantUnavailable, SynthesisUnavailable
from translator_backend.main import app
from translator_backend.models import User
from translator_backend.repository import Collection
from translator_backend.speech import SpeechBackend, SpeechSynthesizer
from translator_backend.translation import TranslationProvider, TranslatorChain

API = "/api/v1"


class StubProvider(TranslationProvider):
    def __init__(self, name, result=None, error=None):
        self.name = name
        self.result = result
        self.error = error
        self.calls = []

    async def translate(self, text, source_lang, target_lang):
        self.calls.append((text, source_lang, target_lang))
        if self.error is not None:
            raise self.error
        return self.result if self.result is not None else f"[{target_lang}] {text}"


class StubBackend(SpeechBackend):
    name = "stub"

    def __init__(self, audio=b"RIFF-audio", content_type="audio/wav", fail=False):
        self.audio = audio
        self.content_type = content_type
        self.fail = fail
        self.calls = []

    async def synthesize(self, text, lang):
        self.calls.append((text, lang))
        if self.fail:
            raise SynthesisUnavailable("huggingface 503: loading", last_status=503, last_body="loading")
        return self.audio, self.content_type


class StubAssistant(ChatAssistant):
    """Records what would be sent to the provider and answers with a canned reply"""

    def __init__(self, reply="Rest and drink water.", fail=False):
        super().__init__(api_key="test")
        self.reply = reply
        self.fail = fail
        self.requests = []

    async def complete(self, messages):
        self.requests.append(messages)
        if self.fail:
            raise AssistantUnavailable("no response from Groq")
        return self.reply


@pytest.fixture
def primary():
    return StubProvider("primary")


@pytest.fixture
def translator(primary):
    return TranslatorChain([primary, StubProvider("secondary", error=ValueError("down"))])


@pytest.fixture
def speech_backend():
    return StubBackend()


@pytest.fixture
def synthesizer(speech_backend):
    return SpeechSynthesizer([], speech_backend)


@pytest.fixture
def assistant():
    return StubAssistant()


@pytest.fixture
def client(translator, synthesizer, assistant):
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)

    app.dependency_overrides[get_translator] = lambda: translator
    app.dependency_overrides[get_synthesizer] = lambda: synthesizer
    app.dependency_overrides[get_assistant] = lambda: assistant

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


def signup(client, email="ada@example.com", name="Ada", password="secret123"):
    response = client.post(f"{API}/auth/signup", json={"name": name, "email": email, "password": password})
    assert response.status_code == 201, response.text
    return response.json()


def auth_headers(token):
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def user(client):
    return signup(client)


@pytest.fixture
def headers(user):
    return auth_headers(user["token"])


@pytest.fixture
def admin_headers(client):
    created = signup(client, email="root@example.com", name="Root", password="rootpass")
    session = SessionLocal()
    try:
        Collection(session, User).update_one(created["user"]["id"], role="admin")
    finally:
        session.close()

    response = client.post(f"{API}/auth/login", json={"email": "root@example.com", "password": "rootpass"})
    assert response.status_code == 200, response.text
    return auth_headers(response.json()["token"])
