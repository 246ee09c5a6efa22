"""Terminal preview of a rendered email body."""

from html.parser import HTMLParser

# Characters of preview text shown in the terminal panel
PREVIEW_CHAR_LIMIT = 2_000

_SKIPPED_TAGS = {"script", "style", "head", "title"}


class _TextCollector(HTMLParser):
    """Collects visible text nodes, skipping script/style/head content."""

    def __init__(self) -> None:
        super().__init__()
        self._parts: list[str] = []
        self._skip_depth = 0

    def handle_starttag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        if tag in _SKIPPED_TAGS:
            self._skip_depth += 1

    def handle_endtag(self, tag: str) -> None:
        if tag in _SKIPPED_TAGS and self._skip_depth:
            self._skip_depth -= 1

    def handle_data(self, data: str) -> None:
        if self._skip_depth:
            return
        text = data.strip()
        if text:
            self._parts.append(text)

    def get_text(self) -> str:
        return "\n".join(self._parts)


def html_to_preview(markup: str, limit: int = PREVIEW_CHAR_LIMIT) -> str:
    """Return readable text from rendered email markup, truncated to `limit`."""
    collector = _TextCollector()
    collector.feed(markup)
    collector.close()
    text = collector.get_text()
    if len(text) > limit:
        return text[:limit].rstrip() + " …"
    return text
