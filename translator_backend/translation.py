import httpx
import json
import logging
from typing import List, Optional, Sequence

from .errors import TranslationUnavailable

logger = logging.getLogger(__name__)

USER_AGENT = "language-translator-backend/translator"

LIBRETRANSLATE_MIRRORS = [
    "https://libretranslate.com/translate",
    "https://translate.argosopentech.com/translate",
    "https://libretranslate.de/translate",
]

def preview(body: str, limit: int = 500) -> str:
    if len(body) > limit:
        return body[:limit] + "..."
    return body

class TranslationProvider:
    """Common interface of every link in the translation chain"""

    name = "provider"

    async def translate(self, text: str, source_lang: str, target_lang: str) -> str:
        raise NotImplementedError

class MyMemoryProvider(TranslationProvider):
    """MyMemory (free, no API key)"""

    name = "mymemory"
    url = "https://api.mymemory.translated.net/get"

    def __init__(self, timeout: float = 10.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.timeout = timeout
        self.transport = transport

    async def translate(self, text: str, source_lang: str, target_lang: str) -> str:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            response = await client.get(
                self.url,
                params={"q": text, "langpair": f"{source_lang}|{target_lang}"},
            )

        if response.status_code != 200:
            raise ValueError(f"mymemory {response.status_code}: {preview(response.text)}")

        try:
            result = response.json()
        except json.JSONDecodeError as e:
            raise ValueError(f"invalid JSON from mymemory: {e}; body: {preview(response.text)}")

        translated = (result.get("responseData") or {}).get("translatedText") or ""
        try:
            response_status = int(result.get("responseStatus") or 0)
        except (TypeError, ValueError):
            response_status = 0

        if response_status == 200 and translated:
            return translated

        details = result.get("responseDetails")
        if details:
            raise ValueError(f"mymemory error: {details}")
        raise ValueError("mymemory returned empty translation")

class LibreTranslateProvider(TranslationProvider):
    """LibreTranslate, trying each configured mirror in order"""

    name = "libretranslate"

    def __init__(
        self,
        endpoints: Sequence[str],
        api_key: str = "",
        timeout: float = 20.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.endpoints = list(endpoints)
        self.api_key = api_key
        self.timeout = timeout
        self.transport = transport

    @classmethod
    def from_settings(cls, settings, **kwargs) -> "LibreTranslateProvider":
        endpoints = []
        if settings.LIBRETRANSLATE_URL.strip():
            endpoints.append(settings.LIBRETRANSLATE_URL.strip())
        endpoints.extend(LIBRETRANSLATE_MIRRORS)
        return cls(endpoints, api_key=settings.LIBRETRANSLATE_API_KEY.strip(), **kwargs)

    async def translate(self, text: str, source_lang: str, target_lang: str) -> str:
        payload = {
            "q": text,
            "source": source_lang.strip().lower(),
            "target": target_lang.strip().lower(),
            "format": "text",
        }
        if self.api_key:
            payload["api_key"] = self.api_key

        headers = {"Accept": "application/json", "User-Agent": USER_AGENT}
        last_error = None

        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            for url in self.endpoints:
                try:
                    response = await client.post(url, json=payload, headers=headers)
                except httpx.HTTPError as e:
                    last_error = f"{url}: {str(e) or repr(e)}"
                    continue

                if response.status_code != 200:
                    # Try next mirror on non-200
                    last_error = f"libretranslate {response.status_code} from {url}: {preview(response.text)}"
                    continue

                try:
                    result = response.json()
                except json.JSONDecodeError as e:
                    # Some mirrors answer with an HTML challenge page
                    last_error = f"invalid JSON from {url}: {e}; body: {preview(response.text)}"
                    continue

                translated = result.get("translatedText") if isinstance(result, dict) else None
                if isinstance(translated, str) and translated.strip():
                    return translated
                last_error = f"empty translation from {url}"

        raise ValueError(last_error or "no libretranslate endpoint configured")

class TranslatorChain:
    """
    Ordered list of providers, tried until one returns a non-empty translation.

    Every call walks the full chain again; nothing is cached between calls.
    """

    def __init__(self, providers: List[TranslationProvider]):
        self.providers = list(providers)

    async def translate(self, text: str, source_lang: str, target_lang: str) -> str:
        last_error = None
        for provider in self.providers:
            try:
                translated = await provider.translate(text, source_lang, target_lang)
            except Exception as e:
                last_error = f"{provider.name}: {str(e) or repr(e)}"
                logger.warning(f"Translation provider {provider.name} failed: {last_error}")
                continue

            if translated and translated.strip():
                logger.info(f"Translated {source_lang}->{target_lang} with {provider.name}")
                return translated
            last_error = f"{provider.name}: empty translation"

        raise TranslationUnavailable(
            f"all translation services failed ({last_error})" if last_error
            else "all translation services failed"
        )

def build_translator(settings, transport: Optional[httpx.AsyncBaseTransport] = None) -> TranslatorChain:
    return TranslatorChain([
        MyMemoryProvider(transport=transport),
        LibreTranslateProvider.from_settings(settings, transport=transport),
    ])
