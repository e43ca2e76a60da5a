"""Tests for voice.py — settings storage and TTS provider routing.

Remote providers are mocked; tenacity's sleep is patched so retries are instant.
"""

import base64
from unittest.mock import MagicMock, patch

import pytest
import requests
from openai import OpenAIError

from db_stores import SettingsStoreDB
from voice import (
    ELEVENLABS_MODEL,
    VoiceProviderError,
    VoiceSettings,
    get_voice_settings,
    speak,
    update_voice_settings,
)


@pytest.fixture
def no_sleep():
    with patch("tenacity.nap.time.sleep"):
        yield


@pytest.fixture
def keys(app):
    app.config["ELEVENLABS_API_KEY"] = "el-test"
    app.config["OPENAI_API_KEY"] = "sk-test"
    return app


def _http_response(status, content=b""):
    resp = MagicMock()
    resp.status_code = status
    resp.content = content
    resp.text = content.decode(errors="ignore")
    return resp


class TestVoiceSettings:
    def test_defaults_when_missing(self, app):
        with app.app_context():
            settings = get_voice_settings()
            assert settings == VoiceSettings()
            assert settings.provider == "browser"
            assert settings.volume == 0.8

    def test_defaults_when_invalid(self, app):
        with app.app_context():
            SettingsStoreDB.put("voice_settings", {"provider": "carrier-pigeon"})
            assert get_voice_settings().provider == "browser"

    def test_unknown_stored_keys_ignored(self, app):
        with app.app_context():
            SettingsStoreDB.put("voice_settings", {"provider": "openai", "legacy": True})
            assert get_voice_settings().provider == "openai"

    def test_update_persists(self, app):
        with app.app_context():
            update_voice_settings({"provider": "elevenlabs", "rate": 1.2})
            settings = get_voice_settings()
            assert settings.provider == "elevenlabs"
            assert settings.rate == 1.2
            assert SettingsStoreDB.get("voice_settings")["provider"] == "elevenlabs"

    @pytest.mark.parametrize("changes", [
        {"provider": "nope"},
        {"volume": 1.5},
        {"rate": 0},
        {"pitch": "high"},
        {"unknown_field": 1},
    ])
    def test_update_rejects_invalid(self, app, changes):
        with app.app_context():
            with pytest.raises(ValueError):
                update_voice_settings(changes)
            assert get_voice_settings() == VoiceSettings()


class TestBrowserProvider:
    def test_italian_instructions(self, app):
        with app.app_context():
            update_voice_settings({"default_italian_voice": "it-voice", "rate": 0.9})
            result = speak("Buongiorno", language="it")
            assert result.provider == "browser"
            assert result.audio_base64 is None
            assert result.instructions["lang"] == "it-IT"
            assert result.instructions["voice"] == "it-voice"
            assert result.instructions["rate"] == 0.9
            assert not result.fell_back

    def test_voice_override(self, app):
        with app.app_context():
            result = speak("Hello", voice_id="custom")
            assert result.instructions["lang"] == "en-US"
            assert result.voice == "custom"

    def test_bad_input(self, app):
        with app.app_context():
            with pytest.raises(ValueError):
                speak("   ")
            with pytest.raises(ValueError):
                speak("Hallo", language="de")

    def test_disabled(self, app):
        with app.app_context():
            update_voice_settings({"enable_tts": False})
            with pytest.raises(VoiceProviderError):
                speak("Hello")


class TestElevenLabs:
    def test_success(self, keys):
        with keys.app_context():
            update_voice_settings({"provider": "elevenlabs"})
            with patch("voice.requests.post", return_value=_http_response(200, b"mp3-bytes")) as post:
                result = speak("Ciao", language="it")
            assert result.provider == "elevenlabs"
            assert base64.b64decode(result.audio_base64) == b"mp3-bytes"
            assert result.audio_format == "mp3"
            url = post.call_args.args[0]
            assert url.endswith("/pNInz6obpgDQGcFmaJgB")
            assert post.call_args.kwargs["json"]["model_id"] == ELEVENLABS_MODEL
            assert post.call_args.kwargs["headers"]["xi-api-key"] == "el-test"

    def test_missing_key_falls_back(self, app):
        with app.app_context():
            app.config["ELEVENLABS_API_KEY"] = ""
            update_voice_settings({"provider": "elevenlabs"})
            with patch("voice.requests.post") as post:
                result = speak("Hello")
            post.assert_not_called()
            assert result.provider == "browser"
            assert result.fell_back
            assert "ELEVENLABS_API_KEY" in result.error

    def test_missing_key_without_fallback_raises(self, app):
        with app.app_context():
            app.config["ELEVENLABS_API_KEY"] = ""
            update_voice_settings({"provider": "elevenlabs", "fallback_to_browser": False})
            with pytest.raises(VoiceProviderError):
                speak("Hello")

    def test_transient_errors_retried(self, keys, no_sleep):
        with keys.app_context():
            update_voice_settings({"provider": "elevenlabs"})
            with patch("voice.requests.post", return_value=_http_response(503)) as post:
                result = speak("Hello")
            assert post.call_count == 3
            assert result.fell_back

    def test_retry_then_success(self, keys, no_sleep):
        with keys.app_context():
            update_voice_settings({"provider": "elevenlabs"})
            responses = [requests.ConnectionError("reset"), _http_response(200, b"ok")]
            with patch("voice.requests.post", side_effect=responses) as post:
                result = speak("Hello")
            assert post.call_count == 2
            assert not result.fell_back
            assert result.provider == "elevenlabs"

    def test_client_error_not_retried(self, keys, no_sleep):
        with keys.app_context():
            update_voice_settings({"provider": "elevenlabs"})
            with patch("voice.requests.post", return_value=_http_response(401, b"bad key")) as post:
                result = speak("Hello")
            assert post.call_count == 1
            assert result.fell_back
            assert "401" in result.error

    def test_empty_audio(self, keys):
        with keys.app_context():
            update_voice_settings({"provider": "elevenlabs", "fallback_to_browser": False})
            with patch("voice.requests.post", return_value=_http_response(200, b"")):
                with pytest.raises(VoiceProviderError):
                    speak("Hello")


class TestOpenAI:
    def test_success_default_voices(self, keys):
        with keys.app_context():
            update_voice_settings({"provider": "openai"})
            with patch("voice.OpenAI") as client_cls:
                client = client_cls.return_value
                client.audio.speech.create.return_value = MagicMock(content=b"openai-mp3")
                en = speak("Hello", language="en")
                it = speak("Ciao", language="it")
            assert en.voice == "echo"
            assert it.voice == "alloy"
            assert base64.b64decode(en.audio_base64) == b"openai-mp3"
            kwargs = client.audio.speech.create.call_args.kwargs
            assert kwargs["model"] == "tts-1"
            assert kwargs["input"] == "Ciao"
            assert client_cls.call_args.kwargs["api_key"] == "sk-test"

    def test_sdk_error_falls_back(self, keys, no_sleep):
        with keys.app_context():
            update_voice_settings({"provider": "openai"})
            with patch("voice.OpenAI") as client_cls:
                client_cls.return_value.audio.speech.create.side_effect = OpenAIError("boom")
                result = speak("Hello")
            assert result.fell_back
            assert result.provider == "browser"
            assert client_cls.return_value.audio.speech.create.call_count == 3
