"""
Speech synthesis backends and the selector that picks one per request.

Precedence, first enabled wins:

1. eSpeak-NG on the local machine (``USE_ESPEAK``)
2. ElevenLabs, only for Yoruba, Igbo and Hausa (``ELEVENLABS_API_KEY``)
3. Hugging Face MMS models, the default

A cloud TTS integration existed upstream only as disabled code and is not
wired in.
"""

import asyncio
import httpx
import logging
from typing import List, Optional, Tuple

from .errors import SynthesisUnavailable
from .translation import preview

logger = logging.getLogger(__name__)

USER_AGENT = "language-translator-backend/tts"

NIGERIAN_TAGS = {
    "yo": "yo-NG", "yo-ng": "yo-NG",
    "ig": "ig-NG", "ig-ng": "ig-NG",
    "ha": "ha-NG", "ha-ng": "ha-NG",
    "en": "en-NG", "en-ng": "en-NG",
}

ESPEAK_VOICES = {
    "yo-NG": "yoruba",
    "ig-NG": "igbo",
    "ha-NG": "hausa",
}

HF_LANGUAGE_ALIASES = {
    "yo": ("yo", "yo-ng", "yor", "yoruba"),
    "ig": ("ig", "ig-ng", "ibo", "igbo"),
    "ha": ("ha", "ha-ng", "hau", "hausa"),
}

YORUBA_FALLBACK_MODEL = "facebook/mms-tts-yor"

Audio = Tuple[bytes, str]

def normalize_lang(lang: str) -> str:
    """
    Normalize a language tag.

    >>> normalize_lang("EN_ng")
    'en-NG'
    >>> normalize_lang("fr-ca")
    'fr-CA'
    """
    tag = (lang or "").strip().replace("_", "-").lower()
    if tag in NIGERIAN_TAGS:
        return NIGERIAN_TAGS[tag]
    if "-" in tag:
        base, region = tag.split("-", 1)
        return f"{base}-{region.upper()}"
    return tag

def base_language(lang: str) -> str:
    tag = (lang or "").strip().lower()
    if "-" in tag:
        return tag.split("-", 1)[0]
    return tag

class SpeechBackend:
    name = "backend"

    def supports(self, lang: str) -> bool:
        return True

    async def synthesize(self, text: str, lang: str) -> Audio:
        raise NotImplementedError

class ESpeakBackend(SpeechBackend):
    """Local eSpeak-NG command line engine"""

    name = "espeak"

    def __init__(self, binary: str = "espeak-ng"):
        self.binary = binary

    def command(self, text: str, lang: str) -> List[str]:
        voice = ESPEAK_VOICES.get(lang, "en")
        return [
            self.binary,
            "-s", "160",  # words per minute
            "-p", "50",   # pitch
            "-a", "100",  # amplitude
            "-v", voice,
            "--stdout",
            "--",
            text,
        ]

    async def synthesize(self, text: str, lang: str) -> Audio:
        try:
            process = await asyncio.create_subprocess_exec(
                *self.command(text, lang),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise SynthesisUnavailable(f"espeak-ng failed: {e}")

        stdout, stderr = await process.communicate()
        if process.returncode != 0:
            raise SynthesisUnavailable(
                f"espeak-ng failed: {stderr.decode(errors='replace').strip()} (exit {process.returncode})"
            )
        return stdout, "audio/wav"

class ElevenLabsBackend(SpeechBackend):
    """ElevenLabs voices for Yoruba, Igbo and Hausa"""

    name = "elevenlabs"
    languages = ("yo", "ig", "ha")
    retry_statuses = (400, 404, 422)

    def __init__(
        self,
        api_key: str,
        model_id: str = "eleven_flash_v2_5",
        voices: Optional[dict] = None,
        default_voice: str = "",
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.api_key = api_key
        self.model_id = model_id or "eleven_flash_v2_5"
        self.voices = voices or {}
        self.default_voice = default_voice
        self.timeout = timeout
        self.transport = transport

    @classmethod
    def from_settings(cls, settings, **kwargs) -> "ElevenLabsBackend":
        return cls(
            api_key=settings.ELEVENLABS_API_KEY.strip(),
            model_id=settings.ELEVENLABS_MODEL_ID.strip(),
            voices={
                "yo": settings.ELEVENLABS_VOICE_ID_YO.strip(),
                "ig": settings.ELEVENLABS_VOICE_ID_IG.strip(),
                "ha": settings.ELEVENLABS_VOICE_ID_HA.strip(),
            },
            default_voice=settings.ELEVENLABS_VOICE_ID_DEFAULT.strip(),
            **kwargs
        )

    def supports(self, lang: str) -> bool:
        return base_language(lang) in self.languages

    def voice_for(self, lang: str) -> str:
        return self.voices.get(base_language(lang)) or self.default_voice

    async def _call(self, client: httpx.AsyncClient, voice_id: str, text: str) -> httpx.Response:
        return await client.post(
            f"https://api.elevenlabs.io/v1/text-to-speech/{voice_id}",
            json={"text": text, "model_id": self.model_id},
            headers={"xi-api-key": self.api_key, "Accept": "audio/mpeg"},
        )

    async def synthesize(self, text: str, lang: str) -> Audio:
        if not self.api_key:
            raise SynthesisUnavailable("ELEVENLABS_API_KEY is not configured")

        voice_id = self.voice_for(lang)
        if not voice_id:
            raise SynthesisUnavailable(f"no ElevenLabs voice configured for language: {lang}")

        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            try:
                response = await self._call(client, voice_id, text)
            except httpx.HTTPError as e:
                logger.error(f"ElevenLabs request error: {e}")
                raise SynthesisUnavailable(f"call ElevenLabs: {str(e) or repr(e)}")

            if (
                response.status_code in self.retry_statuses
                and self.default_voice
                and voice_id != self.default_voice
            ):
                logger.info(
                    f"ElevenLabs: retrying with default voice due to status={response.status_code} for voice={voice_id}"
                )
                try:
                    response = await self._call(client, self.default_voice, text)
                except httpx.HTTPError as e:
                    raise SynthesisUnavailable(f"call ElevenLabs: {str(e) or repr(e)}")

        if response.is_success:
            return response.content, response.headers.get("content-type") or "audio/mpeg"

        body = preview(response.text)
        logger.error(f"ElevenLabs error: status={response.status_code} body={body}")
        raise SynthesisUnavailable(
            f"elevenlabs {response.status_code}: {body}",
            last_status=response.status_code,
            last_body=body,
        )

class HuggingFaceBackend(SpeechBackend):
    """Hugging Face inference API with one MMS model per language"""

    name = "huggingface"

    def __init__(
        self,
        token: str,
        models: dict,
        attempts: int = 3,
        fallback_attempts: int = 2,
        backoff: float = 2.0,
        fallback_delay: float = 0.5,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.token = token
        self.models = models
        self.attempts = attempts
        self.fallback_attempts = fallback_attempts
        self.backoff = backoff
        self.fallback_delay = fallback_delay
        self.timeout = timeout
        self.transport = transport

    @classmethod
    def from_settings(cls, settings, **kwargs) -> "HuggingFaceBackend":
        return cls(
            token=settings.HF_API_TOKEN.strip(),
            models={
                "yo": settings.TTS_YOR_MODEL.strip() or "Xenova/mms-tts-yor",
                "ig": settings.TTS_IGB_MODEL.strip() or "facebook/mms-tts-ibo",
                "ha": settings.TTS_HAU_MODEL.strip() or "facebook/mms-tts-hau",
            },
            **kwargs
        )

    @staticmethod
    def language_key(lang: str) -> Optional[str]:
        tag = (lang or "").strip().lower()
        for key, aliases in HF_LANGUAGE_ALIASES.items():
            if tag in aliases:
                return key
        return None

    async def _post(self, client: httpx.AsyncClient, model: str, text: str) -> httpx.Response:
        return await client.post(
            f"https://api-inference.huggingface.co/models/{model}",
            json={"inputs": text, "options": {"wait_for_model": True}},
            headers={
                "Authorization": f"Bearer {self.token}",
                "Accept": "audio/wav",
                "User-Agent": USER_AGENT,
            },
        )

    async def synthesize(self, text: str, lang: str) -> Audio:
        if not self.token:
            raise SynthesisUnavailable("HF_API_TOKEN is not configured")

        key = self.language_key(lang)
        if key is None:
            raise SynthesisUnavailable(f"unsupported language for Hugging Face TTS: {lang}")
        model = self.models[key]
        logger.info(f"TTS: lang={lang} model={model}")

        last_status = None
        last_body = ""
        last_error = None

        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            for attempt in range(1, self.attempts + 1):
                try:
                    response = await self._post(client, model, text)
                except httpx.HTTPError as e:
                    last_error = str(e) or repr(e)
                    logger.warning(f"TTS request error (attempt {attempt}): {last_error}")
                    if attempt < self.attempts:
                        await asyncio.sleep(self.backoff * attempt)
                    continue

                last_status, last_body = response.status_code, preview(response.text)
                logger.info(
                    f"TTS HF response: status={response.status_code} "
                    f"ct={response.headers.get('content-type', '')} len={len(response.content)} (attempt {attempt})"
                )
                if response.is_success:
                    return response.content, response.headers.get("content-type") or "audio/wav"

                # Only 5xx is worth another try
                if response.status_code < 500:
                    break
                if attempt < self.attempts:
                    await asyncio.sleep(self.backoff * attempt)

            if key == "yo" and model != YORUBA_FALLBACK_MODEL:
                logger.info(f"TTS fallback: lang={lang} fallback_model={YORUBA_FALLBACK_MODEL}")
                for attempt in range(1, self.fallback_attempts + 1):
                    try:
                        response = await self._post(client, YORUBA_FALLBACK_MODEL, text)
                    except httpx.HTTPError as e:
                        last_error = str(e) or repr(e)
                        await asyncio.sleep(self.fallback_delay)
                        continue

                    last_status, last_body = response.status_code, preview(response.text)
                    logger.info(f"TTS fallback HF response: status={response.status_code} (attempt {attempt})")
                    if response.is_success:
                        return response.content, response.headers.get("content-type") or "audio/wav"

        if last_status is None:
            raise SynthesisUnavailable(f"call Hugging Face: {last_error}")
        raise SynthesisUnavailable(
            f"huggingface {last_status}: {last_body}",
            last_status=last_status,
            last_body=last_body,
        )

class SpeechSynthesizer:
    """Picks the first enabled backend that accepts the language"""

    def __init__(self, backends: List[SpeechBackend], default: SpeechBackend):
        self.backends = list(backends)
        self.default = default

    def select(self, lang: str) -> SpeechBackend:
        for backend in self.backends:
            if backend.supports(lang):
                return backend
        return self.default

    async def synthesize(self, text: str, lang: str) -> Audio:
        tag = normalize_lang(lang)
        backend = self.select(tag)
        logger.info(f"TTS handler: provider={backend.name} lang={tag}")
        return await backend.synthesize(text, tag)

def build_synthesizer(settings, transport: Optional[httpx.AsyncBaseTransport] = None) -> SpeechSynthesizer:
    backends = []
    if settings.USE_ESPEAK:
        backends.append(ESpeakBackend(settings.ESPEAK_BINARY))
    if settings.ELEVENLABS_API_KEY.strip():
        backends.append(ElevenLabsBackend.from_settings(settings, transport=transport))
    return SpeechSynthesizer(backends, HuggingFaceBackend.from_settings(settings, transport=transport))
