"""Render model output as sanitized, navigable HTML.

Pipeline: location references are linkified, markdown-it parses the text,
a core rule authorizes every link against the caller's allow-list, Pygments
highlights fenced code, and nh3 strips anything off the safe list.

``render_markdown`` never raises; on an internal failure it returns the
escaped text in a paragraph.
"""

import html
import json
import logging
import re
from collections.abc import Collection
from dataclasses import dataclass
from functools import lru_cache
from urllib.parse import quote, unquote

import nh3
from markdown_it import MarkdownIt
from markdown_it.rules_core import StateCore
from markdown_it.token import Token
from pygments import highlight
from pygments.formatters import HtmlFormatter
from pygments.lexers import TextLexer, get_lexer_by_name
from pygments.util import ClassNotFound

from symlight.core.linkify import (
    PATH_WITH_EXT,
    linkify_references,
    normalize_path,
)
from symlight.models.links import (
    ActiveLink,
    LocationRef,
    PlainTextLink,
    RenderedLink,
    SymbolLink,
)

logger = logging.getLogger(__name__)

OPEN_FILE_COMMAND = "command:symlight.openFile"
LINE_NUMBER_CLASS = "sl-line-number"

DATA_PATH = "data-sl-path"
DATA_LINE = "data-sl-line"
DATA_COL = "data-sl-col"
DATA_LINE_END = "data-sl-line-end"
DATA_SYMBOL = "data-sl-symbol"

# Author-written links to these schemes stay clickable
EXTERNAL_SCHEMES = frozenset({"http", "https", "mailto"})

ALLOWED_TAGS = {
    "a", "blockquote", "br", "code", "del", "em", "h1", "h2", "h3", "h4",
    "h5", "h6", "hr", "li", "ol", "p", "pre", "s", "span", "strong",
    "table", "tbody", "td", "th", "thead", "tr", "ul",
}
ALLOWED_ATTRIBUTES = {
    "a": {"href", "title", DATA_PATH, DATA_LINE, DATA_COL, DATA_LINE_END, DATA_SYMBOL},
    "code": {"class"},
    "span": {"class"},
    "ol": {"start"},
    "th": {"style"},
    "td": {"style"},
}
ALLOWED_URL_SCHEMES = EXTERNAL_SCHEMES | {"command"}
ALLOWED_STYLE_PROPERTIES = {"text-align"}

RANGE_TARGET_RE = re.compile(r"^(.+?):(\d+)-(\d+)$")
LINE_TARGET_RE = re.compile(r"^(.+?):(\d+)(?::(\d+))?$")
EMBEDDED_TARGET_RE = re.compile(rf"({PATH_WITH_EXT}):(\d+)(?:-(\d+))?(?::(\d+))?")
BARE_FILE_RE = re.compile(rf"^{PATH_WITH_EXT}$")
SCHEME_RE = re.compile(r"^([A-Za-z][A-Za-z0-9+.-]*):(?!:)")
SYMBOL_RE = re.compile(r"^[A-Za-z_$][\w$.:#<>~()-]*$")
MAX_SYMBOL_LENGTH = 200

TEXT_LINE_SUFFIX_RE = re.compile(r":(\d+)(?:-(\d+))?(?::(\d+))?")
TRAILING_SUFFIX_RE = re.compile(r":\d+(?:-\d+)?(?::\d+)?$")
WRAPPED_REF_RE = re.compile(r"^\[[^\]]+\.\w+:\d+(?:-\d+)?(?::\d+)?\]$")


@dataclass(frozen=True)
class LinkTarget:
    """Classification of one link destination.

    Exactly one of ``location`` / ``symbol`` is set for internal targets;
    both are ``None`` for external URLs. ``line_known`` is False when the
    destination named a file without a line.
    """

    location: LocationRef | None = None
    symbol: str | None = None
    line_known: bool = True


def classify_link_target(href: str) -> LinkTarget:
    """Decide whether a link points at a file location, a symbol, or elsewhere."""
    if href.startswith("file:"):
        path = href[len("file:"):]
        if path.startswith("//"):
            path = path[2:]
        return LinkTarget(
            location=LocationRef(path=normalize_path(path), line=1), line_known=False
        )

    if "//" not in href:
        m = RANGE_TARGET_RE.match(href)
        if m:
            return LinkTarget(
                location=LocationRef(
                    path=normalize_path(m.group(1)),
                    line=int(m.group(2)),
                    end_line=int(m.group(3)),
                )
            )
        m = LINE_TARGET_RE.match(href)
        if m:
            return LinkTarget(
                location=LocationRef(
                    path=normalize_path(m.group(1)),
                    line=int(m.group(2)),
                    col=int(m.group(3)) if m.group(3) else 1,
                )
            )
        m = EMBEDDED_TARGET_RE.search(href)
        if m:
            end_line = int(m.group(3)) if m.group(3) else None
            return LinkTarget(
                location=LocationRef(
                    path=normalize_path(m.group(1)),
                    line=int(m.group(2)),
                    end_line=end_line,
                    col=int(m.group(4)) if m.group(4) and end_line is None else 1,
                )
            )
        if BARE_FILE_RE.match(href):
            return LinkTarget(
                location=LocationRef(path=normalize_path(href), line=1),
                line_known=False,
            )

    if (
        0 < len(href) < MAX_SYMBOL_LENGTH
        and "//" not in href
        and not SCHEME_RE.match(href)
        and SYMBOL_RE.match(href)
    ):
        return LinkTarget(symbol=href)
    return LinkTarget()


def _location_from_text(location: LocationRef, text: str) -> LocationRef:
    """Take line/column/end-line from a ``:N[-M][:C]`` suffix in link text."""
    m = TEXT_LINE_SUFFIX_RE.search(text)
    if m is None:
        return location
    return LocationRef(
        path=location.path,
        line=int(m.group(1)),
        end_line=int(m.group(2)) if m.group(2) else None,
        col=int(m.group(3)) if m.group(3) else 1,
    )


def is_allowed(location: LocationRef, allowed_links: Collection[str] | None) -> bool:
    """Check a location against the allow-list; ``None`` allows everything."""
    if allowed_links is None:
        return True
    if location.line <= 0:
        return False
    return location.key() in allowed_links


def open_file_href(location: LocationRef) -> str:
    """Build the editor command link that opens ``location``.

    Args:
        location: Authorized file location.

    Returns:
        ``command:symlight.openFile?`` followed by the URL-encoded JSON
        argument list ``[path, line, col]``, plus the end line for a range.
    """
    args: list = [location.path, location.line, location.col]
    if location.is_range:
        args.append(location.end_line)
    return f"{OPEN_FILE_COMMAND}?{quote(json.dumps(args), safe='')}"


def strip_wrapped_brackets(text: str) -> str:
    """``[path:line]`` link text becomes ``path:line``."""
    if WRAPPED_REF_RE.match(text):
        return text[1:-1]
    return text


def authorize_link(
    href: str, text: str, allowed_links: Collection[str] | None
) -> RenderedLink | None:
    """Decide how one link renders.

    Returns ``None`` for external links to a safe scheme, which are left
    untouched.
    """
    target = classify_link_target(href)

    if target.symbol is not None:
        return SymbolLink(symbol=target.symbol, display_text=text)

    if target.location is None:
        scheme = SCHEME_RE.match(href)
        if scheme and scheme.group(1).lower() in EXTERNAL_SCHEMES:
            return None
        return PlainTextLink(display_text=text)

    location = target.location
    if not target.line_known:
        location = _location_from_text(location, text)

    if not is_allowed(location, allowed_links):
        return PlainTextLink(display_text=text)

    data = {
        DATA_PATH: location.path,
        DATA_LINE: str(location.line),
        DATA_COL: str(location.col),
    }
    if location.is_range:
        data[DATA_LINE_END] = str(location.end_line)
    return ActiveLink(
        href=open_file_href(location),
        display_text=strip_wrapped_brackets(text),
        data_attributes=data,
    )


def _inline_text(tokens: list[Token]) -> str:
    return "".join(t.content for t in tokens if t.type in ("text", "code_inline"))


def _display_tokens(display_text: str) -> list[Token]:
    """Text tokens for a link label, setting a trailing ``:line`` apart."""
    suffix = TRAILING_SUFFIX_RE.search(display_text)
    if suffix is None or suffix.start() == 0:
        return [Token("text", "", 0, content=display_text)]
    span = (
        f'<span class="{LINE_NUMBER_CLASS}">'
        f"{html.escape(suffix.group(0))}</span>"
    )
    return [
        Token("text", "", 0, content=display_text[: suffix.start()]),
        Token("html_inline", "", 0, content=span),
    ]


def _rewrite_links(children: list[Token], allowed_links: Collection[str] | None) -> list[Token]:
    out: list[Token] = []
    i = 0
    while i < len(children):
        token = children[i]
        if token.type != "link_open":
            out.append(token)
            i += 1
            continue

        close = i + 1
        while close < len(children) and children[close].type != "link_close":
            close += 1
        inner = children[i + 1:close]
        closing = children[close] if close < len(children) else None

        href = unquote(str(token.attrGet("href") or ""))
        text = _inline_text(inner)
        outcome = authorize_link(href, text, allowed_links)

        if isinstance(outcome, PlainTextLink):
            out.extend(inner)
        elif isinstance(outcome, SymbolLink):
            title = token.attrGet("title")
            token.attrs = {"href": "#", DATA_SYMBOL: outcome.symbol}
            if title:
                token.attrs["title"] = title
            out.append(token)
            out.extend(inner)
            if closing is not None:
                out.append(closing)
        elif isinstance(outcome, ActiveLink):
            title = token.attrGet("title")
            token.attrs = {"href": outcome.href, **outcome.data_attributes}
            if title:
                token.attrs["title"] = title
            out.append(token)
            if all(t.type == "text" for t in inner):
                out.extend(_display_tokens(outcome.display_text))
            else:
                out.extend(inner)
            if closing is not None:
                out.append(closing)
        else:
            out.append(token)
            out.extend(inner)
            if closing is not None:
                out.append(closing)
        i = close + 1
    return out


def authorize_links_rule(state: StateCore) -> None:
    """Core rule: authorize every link in every inline block."""
    allowed_links = state.env.get("allowed_links")
    for block in state.tokens:
        if block.type == "inline" and block.children:
            block.children = _rewrite_links(block.children, allowed_links)


def highlight_code(code: str, lang: str, attrs: str) -> str:
    """Pygments highlighting for fenced code; unknown languages stay plain.

    Args:
        code: Contents of the fence.
        lang: Info-string language name, possibly empty.
        attrs: Remaining info-string attributes, unused.

    Returns:
        Highlighted HTML without a wrapping element; markdown-it adds
        ``<pre><code>``.
    """
    try:
        lexer = get_lexer_by_name(lang) if lang else TextLexer()
    except ClassNotFound:
        lexer = TextLexer()
    return highlight(code, lexer, HtmlFormatter(nowrap=True))


def _validate_link(url: str) -> bool:
    # file: targets are classified by the link filter; scripts never pass
    return not re.match(r"^\s*(javascript|vbscript|data):", url, re.IGNORECASE)


@lru_cache
def get_markdown() -> MarkdownIt:
    """Shared markdown-it parser with the link authorization rule installed."""
    md = MarkdownIt(
        "commonmark",
        {"html": False, "breaks": True, "highlight": highlight_code},
    ).enable(["table", "strikethrough"])
    md.validateLink = _validate_link
    md.core.ruler.push("authorize_links", authorize_links_rule)
    return md


def sanitize_html(markup: str) -> str:
    """Strip elements, attributes and URL schemes outside the safe lists."""
    return nh3.clean(
        markup,
        tags=ALLOWED_TAGS,
        attributes=ALLOWED_ATTRIBUTES,
        url_schemes=ALLOWED_URL_SCHEMES,
        filter_style_properties=ALLOWED_STYLE_PROPERTIES,
        link_rel=None,
    )


def plain_text_fallback(text: str) -> str:
    """Escape text for display when rendering fails.

    Args:
        text: Raw model output.

    Returns:
        The escaped text in a single ``<p>`` element.
    """
    return f"<p>{html.escape(text)}</p>"


def render_markdown(text: str, allowed_links: Collection[str] | None = None) -> str:
    """Render model output to sanitized HTML.

    Args:
        text: Markdown produced by the model.
        allowed_links: ``path:line`` / ``path:start-end`` keys that may become
            clickable. ``None`` allows every file link; an empty collection
            allows none.

    Returns:
        Displayable HTML. Never raises.
    """
    try:
        env = {
            "allowed_links": frozenset(allowed_links) if allowed_links is not None else None
        }
        rendered = get_markdown().render(linkify_references(text), env)
        return sanitize_html(rendered)
    except Exception:
        logger.exception("Markdown rendering failed, falling back to plain text")
        return plain_text_fallback(text)
