import httpx
import json
import pytest

from translator_backend.config import Settings
from translator_backend.errors import SynthesisUnavailable
from translator_backend.speech import (
    ESpeakBackend, ElevenLabsBackend, HuggingFaceBackend, SpeechSynthesizer,
    YORUBA_FALLBACK_MODEL, build_synthesizer, normalize_lang
)

from fastapi.testclient import TestClient

from conftest import API, StubBackend
from translator_backend.main import app


@pytest.mark.parametrize("raw, expected", [
    ("yo", "yo-NG"),
    ("EN_ng", "en-NG"),
    ("fr-ca", "fr-CA"),
    ("de", "de"),
    (" IG ", "ig-NG"),
    ("ha-NG", "ha-NG"),
    ("pt_br", "pt-BR"),
    ("", ""),
])
def test_normalize_lang(raw, expected):
    assert normalize_lang(raw) == expected


def hf_backend(handler, models=None, **kwargs):
    return HuggingFaceBackend(
        token="hf-token",
        models=models or {"yo": "Xenova/mms-tts-yor", "ig": "facebook/mms-tts-ibo", "ha": "facebook/mms-tts-hau"},
        backoff=0,
        fallback_delay=0,
        transport=httpx.MockTransport(handler),
        **kwargs
    )


def model_of(request):
    return request.url.path.split("/models/", 1)[1]


@pytest.mark.asyncio
async def test_huggingface_success():
    seen = []

    def handler(request):
        seen.append((model_of(request), request.headers["Authorization"], json.loads(request.content)))
        return httpx.Response(200, content=b"WAV", headers={"Content-Type": "audio/flac"})

    audio, content_type = await hf_backend(handler).synthesize("Sannu", "ha-NG")

    assert audio == b"WAV"
    assert content_type == "audio/flac"
    assert seen == [("facebook/mms-tts-hau", "Bearer hf-token", {"inputs": "Sannu", "options": {"wait_for_model": True}})]


@pytest.mark.asyncio
async def test_huggingface_defaults_content_type():
    audio, content_type = await hf_backend(lambda request: httpx.Response(200, content=b"WAV")).synthesize("Ndewo", "ig-NG")
    assert content_type == "audio/wav"


@pytest.mark.asyncio
async def test_huggingface_retries_5xx_then_succeeds():
    statuses = iter([503, 502, 200])

    def handler(request):
        status = next(statuses)
        return httpx.Response(status, content=b"WAV" if status == 200 else b"loading")

    audio, _ = await hf_backend(handler).synthesize("Sannu", "ha-NG")
    assert audio == b"WAV"


@pytest.mark.asyncio
async def test_huggingface_does_not_retry_client_errors():
    calls = []

    def handler(request):
        calls.append(model_of(request))
        return httpx.Response(400, text="bad input")

    with pytest.raises(SynthesisUnavailable) as excinfo:
        await hf_backend(handler).synthesize("Ndewo", "ig-NG")

    assert calls == ["facebook/mms-tts-ibo"]
    assert excinfo.value.last_status == 400
    assert excinfo.value.last_body == "bad input"


@pytest.mark.asyncio
async def test_huggingface_gives_up_after_three_attempts():
    calls = []

    def handler(request):
        calls.append(model_of(request))
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(SynthesisUnavailable):
        await hf_backend(handler).synthesize("Sannu", "ha-NG")
    assert len(calls) == 3


@pytest.mark.asyncio
async def test_yoruba_falls_back_to_facebook_model():
    calls = []

    def handler(request):
        model = model_of(request)
        calls.append(model)
        if model == YORUBA_FALLBACK_MODEL:
            return httpx.Response(200, content=b"FB-WAV")
        return httpx.Response(500, text="model error")

    audio, _ = await hf_backend(handler).synthesize("Ẹ káàárọ̀", "yo-NG")

    assert audio == b"FB-WAV"
    assert calls == ["Xenova/mms-tts-yor"] * 3 + [YORUBA_FALLBACK_MODEL]


@pytest.mark.asyncio
async def test_yoruba_fallback_is_bounded():
    calls = []

    def handler(request):
        calls.append(model_of(request))
        return httpx.Response(503, text="unavailable")

    with pytest.raises(SynthesisUnavailable) as excinfo:
        await hf_backend(handler).synthesize("Ẹ káàárọ̀", "yo-NG")

    assert calls.count(YORUBA_FALLBACK_MODEL) == 2
    assert excinfo.value.last_status == 503


@pytest.mark.asyncio
async def test_no_yoruba_fallback_when_primary_is_the_fallback_model():
    calls = []

    def handler(request):
        calls.append(model_of(request))
        return httpx.Response(503, text="unavailable")

    backend = hf_backend(handler, models={"yo": YORUBA_FALLBACK_MODEL})
    with pytest.raises(SynthesisUnavailable):
        await backend.synthesize("Ẹ káàárọ̀", "yo-NG")
    assert calls == [YORUBA_FALLBACK_MODEL] * 3


@pytest.mark.asyncio
async def test_huggingface_rejects_unsupported_language():
    with pytest.raises(SynthesisUnavailable, match="unsupported language"):
        await hf_backend(lambda request: httpx.Response(200)).synthesize("Bonjour", "fr-FR")


@pytest.mark.asyncio
async def test_huggingface_requires_token():
    backend = HuggingFaceBackend(token="", models={})
    with pytest.raises(SynthesisUnavailable, match="HF_API_TOKEN"):
        await backend.synthesize("Sannu", "ha-NG")


def elevenlabs(handler, **kwargs):
    options = {
        "api_key": "xi-key",
        "voices": {"yo": "voice-yo", "ig": "", "ha": "voice-ha"},
        "default_voice": "voice-default",
    }
    options.update(kwargs)
    return ElevenLabsBackend(transport=httpx.MockTransport(handler), **options)


def voice_of(request):
    return request.url.path.rsplit("/", 1)[1]


@pytest.mark.asyncio
async def test_elevenlabs_uses_language_voice():
    seen = []

    def handler(request):
        seen.append((voice_of(request), request.headers["xi-api-key"], json.loads(request.content)))
        return httpx.Response(200, content=b"MP3", headers={"Content-Type": "audio/mpeg"})

    audio, content_type = await elevenlabs(handler).synthesize("Bawo ni", "yo-NG")

    assert (audio, content_type) == (b"MP3", "audio/mpeg")
    assert seen == [("voice-yo", "xi-key", {"text": "Bawo ni", "model_id": "eleven_flash_v2_5"})]


@pytest.mark.asyncio
async def test_elevenlabs_uses_default_voice_when_language_has_none():
    voices = []

    def handler(request):
        voices.append(voice_of(request))
        return httpx.Response(200, content=b"MP3")

    await elevenlabs(handler).synthesize("Ndewo", "ig-NG")
    assert voices == ["voice-default"]


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [400, 404, 422])
async def test_elevenlabs_retries_default_voice_on_client_error(status):
    voices = []

    def handler(request):
        voices.append(voice_of(request))
        if voice_of(request) == "voice-ha":
            return httpx.Response(status, text="voice not found")
        return httpx.Response(200, content=b"MP3")

    audio, _ = await elevenlabs(handler).synthesize("Sannu", "ha-NG")
    assert audio == b"MP3"
    assert voices == ["voice-ha", "voice-default"]


@pytest.mark.asyncio
async def test_elevenlabs_does_not_retry_server_errors():
    voices = []

    def handler(request):
        voices.append(voice_of(request))
        return httpx.Response(500, text="internal")

    with pytest.raises(SynthesisUnavailable) as excinfo:
        await elevenlabs(handler).synthesize("Sannu", "ha-NG")
    assert voices == ["voice-ha"]
    assert excinfo.value.last_status == 500


@pytest.mark.asyncio
async def test_elevenlabs_without_default_voice_fails_once():
    voices = []

    def handler(request):
        voices.append(voice_of(request))
        return httpx.Response(404, text="missing")

    with pytest.raises(SynthesisUnavailable, match="elevenlabs 404"):
        await elevenlabs(handler, default_voice="").synthesize("Sannu", "ha-NG")
    assert voices == ["voice-ha"]


def test_espeak_command_maps_voices():
    backend = ESpeakBackend()
    assert backend.command("Sannu", "ha-NG") == [
        "espeak-ng", "-s", "160", "-p", "50", "-a", "100", "-v", "hausa", "--stdout", "--", "Sannu"
    ]
    assert backend.command("Hello", "en-NG")[8] == "en"


def test_espeak_text_is_never_an_option():
    command = ESpeakBackend().command("-w/tmp/out.wav", "yo-NG")
    assert command[-2:] == ["--", "-w/tmp/out.wav"]


@pytest.mark.asyncio
async def test_espeak_missing_binary_is_unavailable():
    backend = ESpeakBackend(binary="definitely-not-an-espeak-binary")
    with pytest.raises(SynthesisUnavailable, match="espeak-ng failed"):
        await backend.synthesize("Hello", "en-NG")


def test_selector_prefers_espeak():
    synthesizer = build_synthesizer(Settings(USE_ESPEAK=True, ELEVENLABS_API_KEY="xi-key"))
    assert synthesizer.select("yo-NG").name == "espeak"
    assert synthesizer.select("fr-FR").name == "espeak"


def test_selector_routes_nigerian_languages_to_elevenlabs():
    synthesizer = build_synthesizer(Settings(USE_ESPEAK=False, ELEVENLABS_API_KEY="xi-key"))
    assert synthesizer.select("yo-NG").name == "elevenlabs"
    assert synthesizer.select("ig-NG").name == "elevenlabs"
    assert synthesizer.select("en-NG").name == "huggingface"


def test_selector_defaults_to_huggingface():
    synthesizer = build_synthesizer(Settings(USE_ESPEAK=False, ELEVENLABS_API_KEY=""))
    assert synthesizer.select("yo-NG").name == "huggingface"


def test_selector_ignores_cloud_credentials():
    synthesizer = build_synthesizer(Settings(GOOGLE_APPLICATION_CREDENTIALS="/etc/creds.json", ELEVENLABS_API_KEY=""))
    assert synthesizer.select("yo-NG").name == "huggingface"


@pytest.mark.asyncio
async def test_synthesizer_normalizes_before_dispatch():
    backend = StubBackend()
    await SpeechSynthesizer([], backend).synthesize("Bawo", "YO_ng")
    assert backend.calls == [("Bawo", "yo-NG")]


def test_tts_endpoint_returns_audio(client, headers, speech_backend):
    response = client.post(f"{API}/tts", json={"text": "Bawo ni", "lang": "yo"}, headers=headers)

    assert response.status_code == 200
    assert response.content == b"RIFF-audio"
    assert response.headers["content-type"] == "audio/wav"
    assert response.headers["cache-control"] == "no-store"
    assert speech_backend.calls == [("Bawo ni", "yo-NG")]


def test_tts_endpoint_requires_text(client, headers):
    response = client.post(f"{API}/tts", json={"text": "   ", "lang": "yo"}, headers=headers)
    assert response.status_code == 400
    assert response.json() == {"error": "text is required"}


def test_tts_endpoint_provider_failure_is_502(client, headers, speech_backend):
    speech_backend.fail = True
    response = client.post(f"{API}/tts", json={"text": "Bawo ni", "lang": "yo"}, headers=headers)
    assert response.status_code == 502
    assert response.json() == {"error": "TTS failed: huggingface 503: loading"}


def test_tts_endpoint_requires_auth(client):
    assert client.post(f"{API}/tts", json={"text": "Hi"}).status_code == 401


def test_unexpected_failure_keeps_error_envelope(client, headers, speech_backend):
    async def broken(text, lang):
        raise RuntimeError("disk full")

    speech_backend.synthesize = broken
    with TestClient(app, raise_server_exceptions=False) as unguarded:
        response = unguarded.post(f"{API}/tts", json={"text": "Bawo ni", "lang": "yo"}, headers=headers)

    assert response.status_code == 500
    assert response.json() == {"error": "Internal server error"}
