import httpx
import logging
from typing import Iterable, List, Optional

from .errors import AssistantUnavailable

logger = logging.getLogger(__name__)

EMERGENCY_KEYWORDS = (
    "chest pain",
    "difficulty breathing",
    "shortness of breath",
    "severe bleeding",
    "unconscious",
    "fainting",
    "stroke",
    "heart attack",
    "suicidal",
    "overdose",
)

EMERGENCY_DISCLAIMER = (
    "Emergency warning: Your symptoms may be serious. Please seek immediate "
    "medical attention or contact local emergency services immediately.\n\n"
)

SYSTEM_PROMPT = (
    "You are a helpful assistant. Primary role: provide general medical information "
    "about symptoms, possible causes, and general advice. Do not provide diagnosis or "
    "treatment. Always include appropriate caution. You can also answer language-related "
    "questions (translations, grammar, usage, examples) when asked. Respond in {language}."
)

def detect_emergency(text: str) -> bool:
    lowered = (text or "").lower()
    return any(keyword in lowered for keyword in EMERGENCY_KEYWORDS)

def with_disclaimer(user_text: str, reply: str) -> str:
    """Prefix the emergency warning when the user's message calls for it"""
    if detect_emergency(user_text):
        return EMERGENCY_DISCLAIMER + reply
    return reply

def build_chat_messages(history: Iterable, target_language: str) -> List[dict]:
    """System instruction followed by the conversation in its original order"""
    messages = [{"role": "system", "content": SYSTEM_PROMPT.format(language=target_language)}]
    for message in history:
        role = "assistant" if message.role == "assistant" else "user"
        messages.append({"role": role, "content": message.content})
    return messages

class ChatAssistant:
    """Chat completions against Groq's OpenAI-compatible endpoint"""

    temperature = 0.7
    max_tokens = 1000

    def __init__(
        self,
        api_key: str,
        model: str = "llama-3.1-70b-versatile",
        base_url: str = "https://api.groq.com/openai/v1",
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.api_key = api_key
        self.model = model or "llama-3.1-70b-versatile"
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    @classmethod
    def from_settings(cls, settings, **kwargs) -> "ChatAssistant":
        return cls(
            api_key=settings.GROQ_API_KEY.strip(),
            model=settings.GROQ_MODEL.strip(),
            base_url=settings.GROQ_BASE_URL,
            **kwargs
        )

    async def complete(self, messages: List[dict]) -> str:
        if not self.api_key:
            raise AssistantUnavailable("GROQ_API_KEY is not set")

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(
                    f"{self.base_url}/chat/completions",
                    headers={"Authorization": f"Bearer {self.api_key}"},
                    json={
                        "model": self.model,
                        "messages": messages,
                        "temperature": self.temperature,
                        "max_tokens": self.max_tokens,
                    },
                )
        except httpx.HTTPError as e:
            raise AssistantUnavailable(f"groq API error: {str(e) or repr(e)}")

        if not response.is_success:
            raise AssistantUnavailable(f"groq API error: {response.status_code} {response.text[:500]}")

        try:
            choices = response.json().get("choices") or []
        except ValueError:
            raise AssistantUnavailable("groq API error: invalid JSON response")
        if not choices:
            raise AssistantUnavailable("no response from Groq")

        return (choices[0].get("message") or {}).get("content") or ""

    async def respond(self, history: Iterable, user_text: str, target_language: str) -> str:
        """
        Reply to ``user_text``, the last entry of ``history``.

        The emergency warning only touches what is returned, never what is
        sent to the provider.
        """
        reply = await self.complete(build_chat_messages(history, target_language))
        return with_disclaimer(user_text, reply)
