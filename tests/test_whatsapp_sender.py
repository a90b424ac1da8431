import httpx
import pytest

from sdr import whatsapp_sender as wa


@pytest.fixture
def graph(monkeypatch):
    monkeypatch.setenv("WHATSAPP_ACCESS_TOKEN", "EAAG-token")
    monkeypatch.setenv("WHATSAPP_PHONE_NUMBER_ID", "1098765")
    wa.settings.cache_clear()
    monkeypatch.setattr(wa, "DRY_RUN", False)
    posts = []
    responses = []

    def fake_post(url, json=None, headers=None, timeout=None):
        posts.append({"url": url, "json": json, "headers": headers})
        if responses:
            return responses.pop(0)
        return httpx.Response(200, json={"messages": [{"id": f"wamid.{len(posts)}"}]})

    monkeypatch.setattr(wa.httpx, "post", fake_post)
    return posts, responses


def test_send_text_posts_cloud_api_payload(graph):
    posts, _ = graph

    res = wa.send_text("+55 11 99999-0001", "Olá!")

    assert res["status"] == "sent" and res["id"] == "wamid.1"
    assert posts[0]["url"] == "https://graph.facebook.com/v19.0/1098765/messages"
    assert posts[0]["json"] == {
        "messaging_product": "whatsapp",
        "to": "5511999990001",
        "type": "text",
        "text": {"body": "Olá!"},
    }
    assert posts[0]["headers"]["Authorization"] == "Bearer EAAG-token"


def test_send_template_uses_default_language(graph):
    posts, _ = graph

    wa.send_template("5511999990001", "hello_world")

    template = posts[0]["json"]["template"]
    assert template == {"name": "hello_world", "language": {"code": "pt_BR"}, "components": []}


def test_graph_error_surfaces_status_and_body(graph):
    _, responses = graph
    responses.append(httpx.Response(400, json={"error": {"message": "Template name does not exist", "code": 132001}}))

    with pytest.raises(wa.WhatsAppError) as exc:
        wa.send_template("5511999990001", "inexistente")

    assert exc.value.status_code == 400
    assert "Template name does not exist" in str(exc.value)
    assert exc.value.body["error"]["code"] == 132001


def test_rate_limit_is_flagged(graph):
    _, responses = graph
    responses.append(httpx.Response(429, headers={"Retry-After": "3"}))

    with pytest.raises(wa.WhatsAppError) as exc:
        wa.send_text("5511999990001", "oi")

    assert exc.value.status_code == 429


def test_send_sequential_keeps_order_and_stops_on_first_failure(graph):
    posts, responses = graph
    responses.extend([
        httpx.Response(200, json={"messages": [{"id": "wamid.a"}]}),
        httpx.Response(500, text="boom"),
    ])

    with pytest.raises(wa.WhatsAppError):
        wa.send_sequential("5511999990001", ["Primeiro.", "Segundo.", "Terceiro."], delay_ms=0)

    assert [p["json"]["text"]["body"] for p in posts] == ["Primeiro.", "Segundo."]


def test_send_sequential_pauses_between_segments_only(graph, monkeypatch):
    sleeps = []
    monkeypatch.setattr(wa.time, "sleep", lambda s: sleeps.append(s))

    wa.send_sequential("5511999990001", ["a", "", "b", "c"], delay_ms=1000)

    assert sleeps == [1.0, 1.0]


def test_input_validation(graph):
    with pytest.raises(ValueError):
        wa.send_text("5511999990001", "   ")
    with pytest.raises(ValueError):
        wa.send_text("123", "oi")
    with pytest.raises(ValueError):
        wa.send_template("5511999990001", "")


def test_missing_credentials(monkeypatch):
    monkeypatch.delenv("WHATSAPP_ACCESS_TOKEN", raising=False)
    monkeypatch.delenv("WHATSAPP_PHONE_NUMBER_ID", raising=False)
    wa.settings.cache_clear()
    monkeypatch.setattr(wa, "DRY_RUN", False)

    with pytest.raises(wa.WhatsAppError):
        wa.send_text("5511999990001", "oi")
