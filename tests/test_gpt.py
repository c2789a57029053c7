from __future__ import annotations

from types import SimpleNamespace

import httpx
import pytest
from openai import APITimeoutError, OpenAIError

from birdlens.errors import InvalidResponseShape
from birdlens.services import gpt


def _fake_openai_response(payload: str | None = None) -> SimpleNamespace:
    payload = payload or (
        '{"mainBird":{"name":"European Robin","scientificName":"Erithacus rubecula",'
        '"confidence":92,"description":"Small passerine with an orange breast.",'
        '"features":["orange face","grey flanks","brown back","thin bill"],'
        '"habitat":"Woodland and gardens","sound":"Warbling song"},'
        '"similarBirds":[{"name":"American Robin","scientificName":"Turdus migratorius","confidence":8}]}'
    )
    message = SimpleNamespace(content=payload)
    choice = SimpleNamespace(message=message)
    return SimpleNamespace(choices=[choice])


def _fake_client(create_fn):
    chat = SimpleNamespace(completions=SimpleNamespace(create=create_fn))
    return SimpleNamespace(chat=chat)


def test_identify_bird_image_parses_response(monkeypatch):
    monkeypatch.setattr(
        gpt, "_get_client", lambda: _fake_client(lambda **kwargs: _fake_openai_response())
    )

    resp = gpt.identify_bird_image("aGVsbG8=", "image/png")
    assert resp["mainBird"]["name"] == "European Robin"
    assert resp["mainBird"]["features"][0] == "orange face"
    assert resp["similarBirds"][0]["scientificName"] == "Turdus migratorius"


def test_identify_bird_image_sends_data_url(monkeypatch):
    captured: dict = {}

    def _create(**kwargs):
        captured.update(kwargs)
        return _fake_openai_response()

    monkeypatch.setattr(gpt, "_get_client", lambda: _fake_client(_create))

    gpt.identify_bird_image("aGVsbG8=", "image/png")

    image_part = captured["messages"][1]["content"][1]
    assert image_part["image_url"] == {"url": "data:image/png;base64,aGVsbG8="}
    assert captured["timeout"] == gpt._TIMEOUT_SECONDS
    assert captured["model"] == gpt.settings.openai_model
    assert captured["response_format"] == {"type": "json_object"}


def test_identify_bird_sound_uses_audio_model(monkeypatch):
    captured: dict = {}

    def _create(**kwargs):
        captured.update(kwargs)
        return _fake_openai_response()

    monkeypatch.setattr(gpt, "_get_client", lambda: _fake_client(_create))

    gpt.identify_bird_sound("UklGRg==", "wav")

    audio_part = captured["messages"][1]["content"][1]
    assert audio_part == {
        "type": "input_audio",
        "input_audio": {"data": "UklGRg==", "format": "wav"},
    }
    assert captured["model"] == gpt.settings.openai_audio_model
    assert "response_format" not in captured


def test_identify_bird_description_embeds_text(monkeypatch):
    captured: dict = {}

    def _create(**kwargs):
        captured.update(kwargs)
        return _fake_openai_response()

    monkeypatch.setattr(gpt, "_get_client", lambda: _fake_client(_create))

    gpt.identify_bird_description("  small bird, red breast, sings at dawn ")

    text = captured["messages"][1]["content"][0]["text"]
    assert "small bird, red breast, sings at dawn" in text


def test_response_in_code_fence_is_accepted(monkeypatch):
    fenced = '```json\n{"mainBird": {"name": "Wren"}}\n```'
    monkeypatch.setattr(
        gpt,
        "_get_client",
        lambda: _fake_client(lambda **kwargs: _fake_openai_response(fenced)),
    )
    assert gpt.identify_bird_image("aGVsbG8=", "image/jpeg") == {
        "mainBird": {"name": "Wren"}
    }


def test_empty_response_is_invalid_shape(monkeypatch):
    empty = SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=None))])
    monkeypatch.setattr(gpt, "_get_client", lambda: _fake_client(lambda **kwargs: empty))
    with pytest.raises(InvalidResponseShape):
        gpt.identify_bird_image("aGVsbG8=", "image/jpeg")


def test_timeout_is_raised_as_timeout_error(monkeypatch):
    def _create(**kwargs):
        raise APITimeoutError(request=httpx.Request("POST", "https://api.openai.com"))

    monkeypatch.setattr(gpt, "_get_client", lambda: _fake_client(_create))
    with pytest.raises(TimeoutError):
        gpt.identify_bird_image("aGVsbG8=", "image/jpeg")


def test_openai_error_is_raised_as_runtime_error(monkeypatch, caplog):
    def _create(**kwargs):
        raise OpenAIError("boom")

    monkeypatch.setattr(gpt, "_get_client", lambda: _fake_client(_create))
    with pytest.raises(RuntimeError):
        gpt.identify_bird_image("aGVsbG8=", "image/jpeg")
    assert "OpenAI request failed" in caplog.text


def test_get_client_requires_api_key(monkeypatch):
    monkeypatch.setattr(gpt, "_client", None)
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    with pytest.raises(RuntimeError):
        gpt._get_client()


def test_load_timeout_falls_back_on_bad_values(monkeypatch):
    monkeypatch.setenv("OPENAI_TIMEOUT_SECONDS", "abc")
    assert gpt._load_timeout() == 60
    monkeypatch.setenv("OPENAI_TIMEOUT_SECONDS", "-3")
    assert gpt._load_timeout() == 60
    monkeypatch.setenv("OPENAI_TIMEOUT_SECONDS", "15")
    assert gpt._load_timeout() == 15
