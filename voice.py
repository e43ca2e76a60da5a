"""Text-to-speech routing — browser synthesis, ElevenLabs or OpenAI.

The configured provider lives in system_settings under ``voice_settings``.
Remote providers return base64 MP3; the browser provider returns the
parameters the client needs to speak the text itself. When a remote call
fails and fallback is enabled, the browser instructions are returned
instead and the result is marked ``fell_back``.
"""

from __future__ import annotations

import base64
import logging
from dataclasses import asdict, dataclass, fields
from typing import Optional

import requests
from flask import current_app
from openai import OpenAI, OpenAIError
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from db_stores import SettingsStoreDB

logger = logging.getLogger(__name__)

SETTINGS_KEY = "voice_settings"
PROVIDERS = ("browser", "elevenlabs", "openai")
LANGUAGES = {"en": "en-US", "it": "it-IT"}

ELEVENLABS_URL = "https://api.elevenlabs.io/v1/text-to-speech/{voice_id}"
ELEVENLABS_MODEL = "eleven_multilingual_v2"
ELEVENLABS_VOICES = {"en": "21m00Tcm4TlvDq8ikWAM", "it": "pNInz6obpgDQGcFmaJgB"}

OPENAI_TTS_MODEL = "tts-1"
OPENAI_VOICES = {"en": "echo", "it": "alloy"}


class VoiceProviderError(Exception):
    """A TTS provider could not produce audio."""


class TransientVoiceError(VoiceProviderError):
    """Provider failure worth retrying (timeouts, 429, 5xx)."""


@dataclass
class VoiceSettings:
    provider: str = "browser"
    default_english_voice: str = ""
    default_italian_voice: str = ""
    rate: float = 1.0
    pitch: float = 1.0
    volume: float = 0.8
    enable_tts: bool = True
    fallback_to_browser: bool = True

    @classmethod
    def from_dict(cls, data: dict | None) -> "VoiceSettings":
        """Build settings from stored JSON; unknown keys are ignored."""
        known = {f.name for f in fields(cls)}
        settings = cls(**{k: v for k, v in (data or {}).items() if k in known})
        settings.validate()
        return settings

    def validate(self) -> None:
        if self.provider not in PROVIDERS:
            raise ValueError(f"Unknown voice provider: {self.provider}")
        for name in ("rate", "pitch", "volume"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValueError(f"{name} must be a number")
        if not 0 <= self.volume <= 1:
            raise ValueError("volume must be between 0 and 1")
        if self.rate <= 0 or self.pitch <= 0:
            raise ValueError("rate and pitch must be positive")

    def voice_for(self, language: str) -> str:
        return self.default_italian_voice if language == "it" else self.default_english_voice

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class SpeechResult:
    provider: str
    language: str
    voice: str = ""
    audio_base64: Optional[str] = None
    audio_format: Optional[str] = None
    instructions: Optional[dict] = None
    fell_back: bool = False
    error: str = ""

    def to_dict(self) -> dict:
        return asdict(self)


def get_voice_settings() -> VoiceSettings:
    """Stored settings, or defaults when the row is missing or invalid."""
    stored = SettingsStoreDB.get(SETTINGS_KEY)
    try:
        return VoiceSettings.from_dict(stored)
    except (TypeError, ValueError) as e:
        logger.warning("Invalid voice settings in storage, using defaults: %s", e)
        return VoiceSettings()


def update_voice_settings(changes: dict) -> VoiceSettings:
    """Merge *changes* into the current settings and persist them.

    Raises ValueError for unknown fields or invalid values.
    """
    current = get_voice_settings().to_dict()
    unknown = set(changes) - set(current)
    if unknown:
        raise ValueError(f"Unknown voice setting(s): {', '.join(sorted(unknown))}")
    current.update(changes)
    try:
        settings = VoiceSettings(**current)
    except TypeError as e:
        raise ValueError(str(e)) from e
    settings.validate()
    SettingsStoreDB.put(SETTINGS_KEY, settings.to_dict())
    logger.info("Voice settings updated provider=%s", settings.provider)
    return settings


# ── Providers ─────────────────────────────────────────────────────

def browser_instructions(text: str, language: str, settings: VoiceSettings,
                         voice_id: str | None = None) -> dict:
    return {
        "text": text,
        "lang": LANGUAGES[language],
        "voice": voice_id or settings.voice_for(language),
        "rate": settings.rate,
        "pitch": settings.pitch,
        "volume": settings.volume,
    }


@retry(
    retry=retry_if_exception_type(TransientVoiceError),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    stop=stop_after_attempt(3),
    reraise=True,
)
def _elevenlabs_tts(text: str, voice_id: str, api_key: str, timeout: float) -> bytes:
    try:
        resp = requests.post(
            ELEVENLABS_URL.format(voice_id=voice_id),
            headers={
                "xi-api-key": api_key,
                "Accept": "audio/mpeg",
                "Content-Type": "application/json",
            },
            json={
                "text": text,
                "model_id": ELEVENLABS_MODEL,
                "voice_settings": {"stability": 0.5, "similarity_boost": 0.75},
            },
            timeout=timeout,
        )
    except (requests.ConnectionError, requests.Timeout) as e:
        raise TransientVoiceError(f"ElevenLabs unreachable: {e}") from e

    if resp.status_code == 429 or resp.status_code >= 500:
        raise TransientVoiceError(f"ElevenLabs returned {resp.status_code}")
    if resp.status_code != 200:
        raise VoiceProviderError(f"ElevenLabs returned {resp.status_code}: {resp.text[:200]}")
    return resp.content


def speak_elevenlabs(text: str, language: str, settings: VoiceSettings,
                     voice_id: str | None = None) -> SpeechResult:
    api_key = current_app.config.get("ELEVENLABS_API_KEY", "")
    if not api_key:
        raise VoiceProviderError("ELEVENLABS_API_KEY is not configured")
    voice = voice_id or settings.voice_for(language) or ELEVENLABS_VOICES[language]
    audio = _elevenlabs_tts(text, voice, api_key, current_app.config.get("TTS_TIMEOUT_SECONDS", 30))
    if not audio:
        raise VoiceProviderError("ElevenLabs returned no audio")
    return SpeechResult(
        provider="elevenlabs",
        language=language,
        voice=voice,
        audio_base64=base64.b64encode(audio).decode("ascii"),
        audio_format="mp3",
    )


@retry(
    retry=retry_if_exception_type(TransientVoiceError),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    stop=stop_after_attempt(3),
    reraise=True,
)
def _openai_tts(text: str, voice: str, api_key: str, timeout: float) -> bytes:
    client = OpenAI(api_key=api_key, timeout=timeout, max_retries=0)
    try:
        response = client.audio.speech.create(
            model=OPENAI_TTS_MODEL,
            voice=voice,
            input=text,
            response_format="mp3",
        )
    except OpenAIError as e:
        status = getattr(e, "status_code", None)
        if status is None or status == 429 or status >= 500:
            raise TransientVoiceError(f"OpenAI TTS failed: {e}") from e
        raise VoiceProviderError(f"OpenAI TTS failed: {e}") from e
    return response.content


def speak_openai(text: str, language: str, settings: VoiceSettings,
                 voice_id: str | None = None) -> SpeechResult:
    api_key = current_app.config.get("OPENAI_API_KEY", "")
    if not api_key:
        raise VoiceProviderError("OPENAI_API_KEY is not configured")
    voice = voice_id or settings.voice_for(language) or OPENAI_VOICES[language]
    audio = _openai_tts(text, voice, api_key, current_app.config.get("TTS_TIMEOUT_SECONDS", 30))
    if not audio:
        raise VoiceProviderError("OpenAI returned no audio")
    return SpeechResult(
        provider="openai",
        language=language,
        voice=voice,
        audio_base64=base64.b64encode(audio).decode("ascii"),
        audio_format="mp3",
    )


_REMOTE_PROVIDERS = {
    "elevenlabs": speak_elevenlabs,
    "openai": speak_openai,
}


def speak(text: str, language: str = "en", voice_id: str | None = None,
          settings: VoiceSettings | None = None) -> SpeechResult:
    """Synthesize *text* with the configured provider.

    Raises ValueError for bad input and VoiceProviderError when TTS is
    disabled or the provider fails without a browser fallback.
    """
    if not text or not text.strip():
        raise ValueError("Text is required")
    if language not in LANGUAGES:
        raise ValueError(f"Unsupported language: {language}")

    settings = settings or get_voice_settings()
    if not settings.enable_tts:
        raise VoiceProviderError("Text-to-speech is disabled")

    if settings.provider == "browser":
        instructions = browser_instructions(text, language, settings, voice_id)
        return SpeechResult(provider="browser", language=language,
                            voice=instructions["voice"], instructions=instructions)

    try:
        return _REMOTE_PROVIDERS[settings.provider](text, language, settings, voice_id)
    except VoiceProviderError as e:
        if not settings.fallback_to_browser:
            raise
        logger.warning("TTS provider %s failed, falling back to browser: %s", settings.provider, e)
        # provider voice ids mean nothing to the browser
        instructions = browser_instructions(text, language, settings, voice_id=None)
        instructions["voice"] = ""
        return SpeechResult(provider="browser", language=language, instructions=instructions,
                            fell_back=True, error=str(e))
