"""
Message Formatter for Telegram
Converts scored articles into Markdown notification text
"""

from typing import Any

from marketwire.timeutil import to_local

DISCLAIMER = (
    "Ini adalah informasi untuk keperluan analisis. "
    "Lakukan riset mandiri sebelum mengambil keputusan investasi."
)
NO_DESCRIPTION = "Tidak ada deskripsi"
MARKDOWN_SPECIALS = ("_", "*", "`", "[")


def escape_markdown(text: str) -> str:
    """Escape Telegram (legacy) Markdown control characters in feed text"""
    if not text:
        return ""
    for char in MARKDOWN_SPECIALS:
        text = text.replace(char, f"\\{char}")
    return text


def strip_markdown(text: str) -> str:
    """Drop control characters from text placed inside an entity, where escapes are not allowed"""
    if not text:
        return ""
    for char in MARKDOWN_SPECIALS + ("]",):
        text = text.replace(char, "")
    return text


class MessageFormatter:
    """Formats HIGH and MED articles for Telegram messages"""

    def __init__(self, time_zone: str = "Asia/Jakarta", max_description_length: int = 200):
        """
        Initialize formatter

        Args:
            time_zone: Timezone used for the displayed publish time (WIB by default)
            max_description_length: Maximum length of the HIGH description
        """
        self.time_zone = time_zone
        self.max_description_length = max_description_length

    def truncate_content(self, text: str, max_length: int = None) -> str:
        """Truncate text to specified length, breaking at sentence boundary"""
        if max_length is None:
            max_length = self.max_description_length

        if len(text) <= max_length:
            return text

        truncated = text[:max_length]
        for char in ['. ', '! ', '? ']:
            pos = truncated.rfind(char)
            if pos > 0:
                return truncated[:pos + 1] + "..."

        return truncated.rstrip() + "..."

    def _format_time(self, article: Any, with_year: bool = True) -> str:
        published = getattr(article, "pub_date_local", None)
        if published is None:
            return "-"
        local = to_local(published, self.time_zone)
        return local.strftime("%d/%m/%Y %H:%M" if with_year else "%d/%m %H:%M")

    def format_high(self, article: Any) -> str:
        description = " ".join((article.description or "").split())
        short_desc = self.truncate_content(description) if description else NO_DESCRIPTION

        lines = [
            f"🚨 *[IMPACT HIGH]* {escape_markdown(article.title)}",
            "",
            f"📌 *Topik:* {escape_markdown(article.source)}",
            f"📍 *Sumber:* {article.source_tier}",
            f"⏰ *Waktu:* {self._format_time(article)} WIB",
            "",
            f"_{strip_markdown(short_desc)}_",
            "",
        ]
        if article.link:
            lines += [f"🔗 [Baca Selengkapnya]({article.link})", ""]
        lines.append(f"⚠️ _{DISCLAIMER}_")
        return "\n".join(lines)

    def format_med(self, article: Any) -> str:
        lines = [
            f"📈 {escape_markdown(article.title)}",
            "",
        ]
        if article.link:
            lines.append(f"🔗 [Baca Selengkapnya]({article.link})")
        lines.append(f"⏰ {self._format_time(article, with_year=False)} WIB | 📍 {escape_markdown(article.source)}")
        return "\n".join(lines)

    def format(self, article: Any) -> str:
        if article.impact_category == "HIGH":
            return self.format_high(article)
        return self.format_med(article)
