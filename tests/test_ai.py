from types import SimpleNamespace

import pytest

import sdr.ai.decision as decision
import sdr.ai.media as media
from sdr.ai.client import AIDecisionError
from sdr.datastore import CONNECTOR


class FakeCompletions:
    def __init__(self, message):
        self.message = message
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        return SimpleNamespace(choices=[SimpleNamespace(message=self.message)])


def _client(message):
    completions = FakeCompletions(message)
    return SimpleNamespace(chat=SimpleNamespace(completions=completions)), completions


def test_text_reply_is_split_into_sentences(monkeypatch):
    client, completions = _client(SimpleNamespace(content="Olá! Tudo bem? Posso ajudar.", tool_calls=None))
    monkeypatch.setattr(decision, "openai_client", lambda: client)

    result = decision.get_decision([{"role": "user", "content": "oi"}], "client_1")

    assert isinstance(result, decision.TextDecision)
    assert result.segments == ["Olá!", "Tudo bem?", "Posso ajudar."]
    sent = completions.calls[0]
    assert sent["messages"][0] == {"role": "system", "content": decision.DEFAULT_SYSTEM_PROMPT}
    assert sent["tools"][0]["function"]["name"] == "propor_agendamento_reuniao"


def test_tenant_prompt_overrides_default(monkeypatch):
    CONNECTOR.client_settings().table.create({"client_id": "client_1", "ai_system_prompt": "Você vende energia solar."})
    client, completions = _client(SimpleNamespace(content="Oi.", tool_calls=None))
    monkeypatch.setattr(decision, "openai_client", lambda: client)

    decision.get_decision([], "client_1")

    assert completions.calls[0]["messages"][0]["content"] == "Você vende energia solar."


def test_first_tool_call_wins(monkeypatch):
    calls = [
        SimpleNamespace(id="call_1", function=SimpleNamespace(name="propor_agendamento_reuniao", arguments='{"motivo": "interesse"}')),
        SimpleNamespace(id="call_2", function=SimpleNamespace(name="outra", arguments="{}")),
    ]
    client, _ = _client(SimpleNamespace(content=None, tool_calls=calls))
    monkeypatch.setattr(decision, "openai_client", lambda: client)

    result = decision.get_decision([], None)

    assert isinstance(result, decision.ToolCallDecision)
    assert (result.name, result.arguments, result.call_id) == ("propor_agendamento_reuniao", {"motivo": "interesse"}, "call_1")


def test_provider_failure_becomes_decision_error(monkeypatch):
    class Broken:
        def create(self, **kwargs):
            raise RuntimeError("503")

    monkeypatch.setattr(decision, "openai_client", lambda: SimpleNamespace(chat=SimpleNamespace(completions=Broken())))

    with pytest.raises(AIDecisionError):
        decision.get_decision([], None)


def test_missing_api_key_raises(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    decision.settings.cache_clear()

    with pytest.raises(AIDecisionError):
        decision.get_decision([], None)


def test_transcription_sends_portuguese_audio(monkeypatch):
    captured = {}

    def create(**kwargs):
        captured.update(kwargs)
        return SimpleNamespace(text=" quero uma proposta ")

    fake = SimpleNamespace(audio=SimpleNamespace(transcriptions=SimpleNamespace(create=create)))
    monkeypatch.setattr(media, "openai_client", lambda: fake)
    monkeypatch.setattr(media, "download_media", lambda url: b"OggS...")

    text = media.transcribe_audio("https://media/1", "audio/ogg; codecs=opus")

    assert text == "quero uma proposta"
    assert captured["language"] == "pt"
    assert captured["file"] == ("audio.ogg", b"OggS...", "audio/ogg; codecs=opus")


def test_empty_completion_text_has_no_segments():
    assert decision.segment_text("   ") == []
    assert decision.segment_text("Sem pontuação") == ["Sem pontuação"]
