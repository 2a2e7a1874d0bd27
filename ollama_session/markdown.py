"""Inline markdown → rich ``Text`` for transcript content.

Only inline syntax is interpreted (strong, emphasis, code spans,
strikethrough, links). Every line is parsed on its own and its leading and
trailing whitespace is copied through untouched, so the styled text keeps the
spacing and line breaks of the raw content.
"""

from typing import List

from markdown_it import MarkdownIt
from rich.style import Style
from rich.text import Text

from .logger import get_logger

__all__ = ["render_inline"]

_log = get_logger(__name__)

_md = MarkdownIt("commonmark").enable("strikethrough")

_OPEN_STYLES = {
    "strong_open": "markdown.strong",
    "em_open": "markdown.em",
    "s_open": "markdown.s",
}
_CLOSE_TOKENS = {"strong_close", "em_close", "s_close", "link_close"}
_LITERAL_TOKENS = {"text", "text_special", "html_inline"}


def render_inline(source: str) -> Text:
    """Render ``source`` as styled text; never raises.

    On any parser failure the raw source comes back as plain ``Text``.
    """
    try:
        text = Text()
        for i, line in enumerate(source.split("\n")):
            if i:
                text.append("\n")
            _append_line(text, line)
        return text
    except Exception as e:
        _log.debug("Markdown render failed, falling back to plain text: %s", e)
        return Text(source)


def _append_line(text: Text, line: str) -> None:
    body = line.strip(" \t")
    if not body:
        text.append(line)
        return
    lead = line[:len(line) - len(line.lstrip(" \t"))]
    trail = line[len(line.rstrip(" \t")):]

    text.append(lead)
    for token in _md.parseInline(body):
        _append_children(text, token.children or [])
    text.append(trail)


def _append_children(text: Text, children) -> None:
    active: List[Style | str] = []

    def emit(content: str, extra=None) -> None:
        if not content:
            return
        start = len(text)
        text.append(content)
        end = len(text)
        for style in active:
            text.stylize(style, start, end)
        if extra is not None:
            text.stylize(extra, start, end)

    for child in children:
        kind = child.type
        if kind in _OPEN_STYLES:
            active.append(_OPEN_STYLES[kind])
        elif kind == "link_open":
            active.append(Style(link=child.attrGet("href"), underline=True))
        elif kind in _CLOSE_TOKENS:
            if active:
                active.pop()
        elif kind == "code_inline":
            emit(child.content, "markdown.code")
        elif kind in ("softbreak", "hardbreak"):
            emit("\n")
        elif kind in _LITERAL_TOKENS or kind == "image":
            emit(child.content)
        else:
            emit(child.content or "")
