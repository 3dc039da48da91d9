"""Find code-location references in model output and turn them into links.

Two passes run before markdown rendering, both skipping fenced and indented
code blocks and links the author already wrote:

1. back-tick spans holding a single ``path.ext:N[-M][:C]`` reference;
2. bare references in the prose between code spans and links.

Each reference becomes ``[literal](canonical)``. Whether the link stays
clickable is decided later by the link authorization filter.
"""

import re
from collections.abc import Iterable

from symlight.models.links import LocationRef

# Legacy path prefixes collapsed onto the canonical one
PATH_ALIASES: tuple[tuple[str, str], ...] = (
    ("rc/", "src/"),
    ("srs/", "src/"),
)

PATH_CHARS = r"A-Za-z0-9_./\\@+~-"
PATH_WITH_EXT = rf"[{PATH_CHARS}]+\.[A-Za-z0-9]+"
LINE_SUFFIX = r":\d+(?:-\d+)?(?::\d+)?"

FENCE_RE = re.compile(r"^[ \t]*(```|~~~)[^\n]*\n[\s\S]*?(?:^[ \t]*\1[^\n]*$|\Z)", re.MULTILINE)

INDENTED_RE = re.compile(r"(?:^(?: {4}|\t)[^\n]*(?:\n|\Z))+", re.MULTILINE)
BLANK_LINE_END_RE = re.compile(r"\n[ \t]*\n\Z")
LIST_ITEM_RE = re.compile(r"^\s*(?:[-*+]|\d+[.)])\s")

INLINE_LINK_RE = re.compile(r"!?\[[^\]\n]*\]\([^)\n]*\)")

# Code spans and links are matched left to right, so whichever opens first wins
PROTECTED_SPAN_RE = re.compile(rf"`[^`]*`|{INLINE_LINK_RE.pattern}")

BACKTICK_REF_RE = re.compile(r"`([^\s`]+\.\w+:\d+(?:-\d+)?(?::\d+)?)`")

# A whole path token: not glued to a preceding path character, not already
# link text ("[") or a link destination ("]("), not followed by a word char.
BARE_REF_RE = re.compile(
    rf"(?<![\[`:{PATH_CHARS}])(?<!\]\()({PATH_WITH_EXT}{LINE_SUFFIX})(?![A-Za-z0-9_])"
)

REF_IN_TEXT_RE = re.compile(rf"({PATH_WITH_EXT}):(\d+)(?:-(\d+))?(?::(\d+))?")


def normalize_path(path: str) -> str:
    """Collapse legacy path prefixes onto the canonical prefix."""
    for alias, canonical in PATH_ALIASES:
        if path.startswith(alias):
            return canonical + path[len(alias):]
    return path


def normalize_reference(reference: str) -> str:
    """Normalize the path portion of a ``path:line...`` reference.

    Args:
        reference: Text such as ``rc/a.ts:10-12``.

    Returns:
        The reference with its path prefix canonicalized, or ``reference``
        unchanged if it is not a location reference.
    """
    match = REF_IN_TEXT_RE.fullmatch(reference)
    if match is None:
        return reference
    return normalize_path(match.group(1)) + reference[match.end(1):]


def split_code_blocks(text: str) -> list[tuple[str, bool]]:
    """Split text into ``(segment, is_code_block)`` pieces.

    Fenced blocks and indented code blocks both count as code. An
    unterminated fence runs to the end of the text, as it does while a
    response is still streaming in.

    Args:
        text: Markdown source.

    Returns:
        Pieces in order; joined they reproduce ``text``.
    """
    pieces: list[tuple[str, bool]] = []
    last = 0
    for match in FENCE_RE.finditer(text):
        if match.start() > last:
            pieces.extend(_split_indented(text[last:match.start()]))
        pieces.append((match.group(0), True))
        last = match.end()
    if last < len(text):
        pieces.extend(_split_indented(text[last:]))
    return pieces


def _opens_indented_block(prose: str) -> bool:
    # Indented code cannot interrupt a paragraph or continue a list item
    if prose.strip() == "":
        return True
    if not BLANK_LINE_END_RE.search(prose):
        return False
    for line in reversed(prose.splitlines()):
        if line.strip() and not line.startswith(("    ", "\t")):
            return LIST_ITEM_RE.match(line) is None
    return True


def _split_indented(text: str) -> list[tuple[str, bool]]:
    pieces: list[tuple[str, bool]] = []
    last = 0
    for match in INDENTED_RE.finditer(text):
        if not match.group(0).strip() or not _opens_indented_block(text[:match.start()]):
            continue
        if match.start() > last:
            pieces.append((text[last:match.start()], False))
        pieces.append((match.group(0), True))
        last = match.end()
    if last < len(text):
        pieces.append((text[last:], False))
    return pieces


def _as_link(reference: str) -> str:
    return f"[{reference}]({normalize_reference(reference)})"


def _rewrite_between(segment: str, protected: re.Pattern[str], rewrite) -> str:
    out = []
    last = 0
    for match in protected.finditer(segment):
        out.append(rewrite(segment[last:match.start()]))
        out.append(match.group(0))
        last = match.end()
    out.append(rewrite(segment[last:]))
    return "".join(out)


def linkify_backtick_refs(markdown: str) -> str:
    """Rewrite `` `path.ext:N` `` code spans into links.

    Code blocks and existing ``[text](dest)`` links are left alone.

    Args:
        markdown: Model output.

    Returns:
        Markdown with qualifying code spans replaced by links.
    """

    def replace(match: re.Match[str]) -> str:
        reference = match.group(1)
        if "://" in reference:
            return match.group(0)
        return _as_link(reference)

    return "".join(
        segment
        if code
        else _rewrite_between(segment, INLINE_LINK_RE, lambda s: BACKTICK_REF_RE.sub(replace, s))
        for segment, code in split_code_blocks(markdown)
    )


def linkify_bare_refs(markdown: str) -> str:
    """Rewrite bare ``path.ext:N`` references in prose.

    Only the text between code blocks, code spans and existing links is
    scanned.
    """

    def replace(match: re.Match[str]) -> str:
        reference = match.group(1)
        if "://" in reference:
            return reference
        return _as_link(reference)

    return "".join(
        segment
        if code
        else _rewrite_between(segment, PROTECTED_SPAN_RE, lambda s: BARE_REF_RE.sub(replace, s))
        for segment, code in split_code_blocks(markdown)
    )


def linkify_references(markdown: str) -> str:
    """Run both reference passes, back-tick spans first."""
    return linkify_bare_refs(linkify_backtick_refs(markdown))


def find_references(text: str) -> list[LocationRef]:
    """Every ``path:line[-end][:col]`` reference in ``text``, normalized."""
    refs = []
    for match in REF_IN_TEXT_RE.finditer(text):
        refs.append(
            LocationRef(
                path=normalize_path(match.group(1)),
                line=int(match.group(2)),
                end_line=int(match.group(3)) if match.group(3) else None,
                col=int(match.group(4)) if match.group(4) else 1,
            )
        )
    return refs


def add_allowed_link(
    allowed: set[str], path: str, line: int, end_line: int | None = None
) -> None:
    """Register ``path:line`` (and ``path:line-end`` for a real range)."""
    if not path or line <= 0:
        return
    path = normalize_path(path)
    if end_line is not None and end_line >= line:
        allowed.add(f"{path}:{line}-{end_line}")
    allowed.add(f"{path}:{line}")


def collect_allowed_links(
    relative_path: str,
    start_line: int,
    end_line: int | None = None,
    display_path: str | None = None,
    definition: tuple[str, int] | None = None,
    references_summary: str | None = None,
    caller_locations: Iterable[tuple[str, int]] = (),
) -> set[str]:
    """Build the allow-list for one explanation.

    Args:
        relative_path: Workspace-relative path of the explained symbol.
        start_line: First line (1-based) of the symbol.
        end_line: Last line of the symbol, if it spans several.
        display_path: Alternative path shown to the model, if different.
        definition: ``(path, line)`` of the symbol's definition.
        references_summary: Free text listing references as ``path:line``.
        caller_locations: ``(path, line)`` of caller snippets.

    Returns:
        Set of ``path:line`` / ``path:start-end`` keys.
    """
    allowed: set[str] = set()
    span_end = end_line if end_line is not None and end_line > start_line else None
    add_allowed_link(allowed, relative_path, start_line, span_end)
    if display_path and display_path != relative_path and ":" not in display_path:
        add_allowed_link(allowed, display_path, start_line, span_end)
    if definition is not None:
        add_allowed_link(allowed, definition[0], definition[1])
    if references_summary:
        for ref in find_references(references_summary):
            add_allowed_link(allowed, ref.path, ref.line, ref.end_line)
    for path, line in caller_locations:
        add_allowed_link(allowed, path, line)
    return allowed
