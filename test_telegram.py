"""
Telegram Client and Message Formatter Tests
"""

from unittest import mock

import pytest
import requests

from conftest import make_article
from marketwire.notification.message_formatter import MessageFormatter, escape_markdown, strip_markdown
from marketwire.notification.telegram_client import LoggingClient, TelegramAPIError, TelegramClient


def _response(status, payload):
    response = mock.MagicMock()
    response.status_code = status
    response.json.return_value = payload
    response.text = str(payload)
    return response


def test_send_message_payload():
    session = mock.MagicMock()
    session.post.return_value = _response(200, {"ok": True, "result": {"message_id": 7}})
    client = TelegramClient("123:abc", session=session)

    result = client.send_message(-100200, "*halo*")

    assert result == {"message_id": 7}
    url = session.post.call_args.args[0]
    payload = session.post.call_args.kwargs["json"]
    assert url == "https://api.telegram.org/bot123:abc/sendMessage"
    assert payload == {
        "chat_id": -100200,
        "text": "*halo*",
        "parse_mode": "Markdown",
        "disable_web_page_preview": True,
    }


@pytest.mark.parametrize("status,description,kind", [
    (403, "Forbidden: bot was blocked by the user", "blocked"),
    (403, "Forbidden: user is deactivated", "blocked"),
    (400, "Bad Request: chat not found", "not_found"),
    (429, "Too Many Requests: retry after 5", "other"),
])
def test_api_errors_are_classified(status, description, kind):
    session = mock.MagicMock()
    session.post.return_value = _response(status, {"ok": False, "error_code": status, "description": description})
    client = TelegramClient("t", session=session)

    with pytest.raises(TelegramAPIError) as excinfo:
        client.send_message(1, "x")

    assert excinfo.value.code == status
    assert excinfo.value.kind == kind


def test_network_error_becomes_other():
    session = mock.MagicMock()
    session.post.side_effect = requests.ConnectionError("connection reset")
    client = TelegramClient("t", session=session)

    with pytest.raises(TelegramAPIError) as excinfo:
        client.send_message(1, "x")

    assert excinfo.value.kind == "other"
    assert excinfo.value.code == 0


def test_non_json_error_body():
    session = mock.MagicMock()
    response = _response(502, None)
    response.json.side_effect = ValueError("no json")
    response.text = "Bad Gateway"
    session.post.return_value = response

    with pytest.raises(TelegramAPIError) as excinfo:
        TelegramClient("t", session=session).send_message(1, "x")

    assert excinfo.value.code == 502
    assert excinfo.value.description == "Bad Gateway"


def test_token_required():
    with pytest.raises(ValueError):
        TelegramClient("")


def test_logging_client_records():
    client = LoggingClient()
    client.send_message(5, "line one\nline two")
    assert client.sent == [(5, "line one\nline two")]


def test_escape_markdown():
    assert escape_markdown("laba_bersih *naik* [Q3]") == "laba\\_bersih \\*naik\\* \\[Q3]"


def test_strip_markdown_inside_entities():
    assert strip_markdown("laba_bersih *naik* [Q3] `kode`") == "lababersih naik Q3 kode"
    assert strip_markdown(None) == ""


def test_truncate_at_sentence_boundary():
    formatter = MessageFormatter(max_description_length=40)
    text = "IHSG turun dua persen. Asing mencatat net sell besar hari ini."
    assert formatter.truncate_content(text) == "IHSG turun dua persen...."

    assert formatter.truncate_content("pendek") == "pendek"
    assert formatter.truncate_content("a" * 50) == "a" * 40 + "..."


def test_format_high():
    article = make_article(
        title="IHSG anjlok_3 persen",
        description="Indeks   melemah tajam.\nAsing keluar.",
        source="CNBC Market",
        source_tier="CORE",
        link="https://example.com/ihsg",
        impact_category="HIGH",
    )

    message = MessageFormatter().format(article)

    assert message.startswith("🚨 *[IMPACT HIGH]* IHSG anjlok\\_3 persen")
    assert "📍 *Sumber:* CORE" in message
    assert "12/11/2024 10:00 WIB" in message
    assert "_Indeks melemah tajam. Asing keluar._" in message
    assert "[Baca Selengkapnya](https://example.com/ihsg)" in message
    assert "riset mandiri" in message


def test_format_high_without_description():
    article = make_article(title="Fed tahan suku bunga", impact_category="HIGH")
    assert "_Tidak ada deskripsi_" in MessageFormatter().format_high(article)


def test_format_med():
    article = make_article(title="Rupiah stabil", source="Tempo Bisnis", link="https://example.com/r",
                           impact_category="MED")

    message = MessageFormatter().format(article)

    assert message.splitlines()[0] == "📈 Rupiah stabil"
    assert "⏰ 12/11 10:00 WIB | 📍 Tempo Bisnis" in message


def test_description_markup_is_stripped_inside_italics():
    article = make_article(title="Laba_bersih BBCA", description="Laba_bersih *naik* 10%", impact_category="HIGH")

    message = MessageFormatter().format_high(article)

    assert "* Laba\\_bersih BBCA" in message
    assert "_Lababersih naik 10%_" in message


def test_missing_link_omits_read_more():
    high = make_article(title="Fed tahan suku bunga", link="", impact_category="HIGH")
    med = make_article(title="Rupiah stabil", link="", impact_category="MED")

    assert "Baca Selengkapnya" not in MessageFormatter().format(high)
    assert "Baca Selengkapnya" not in MessageFormatter().format(med)
    assert MessageFormatter().format(high).endswith("riset mandiri sebelum mengambil keputusan investasi._")
