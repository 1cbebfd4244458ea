"""
DiagramSanitizer: normalize model-written mindmap outlines for the diagram renderer.

The renderer rejects outlines with more than one root and chokes on bracket, quote
and punctuation characters inside node labels. This is a heuristic text transform,
not a parser: it guarantees a single header, a single root and clean labels, and
leaves deeper nesting as the model wrote it.
"""

import re

HEADER = "mindmap"
ROOT_INDENT = "  "
CHILD_INDENT = "    "

_OPENING_FENCE = re.compile(r"^```[\w-]*\s*", re.IGNORECASE)
_CLOSING_FENCE = re.compile(r"\s*```$")
_BREAKING_CHARS = re.compile(r"[()\[\]{}\":;]")
_LEADING_BULLET = re.compile(r"^[-*+•]+\s*")


def clean_label(text: str) -> str:
    """Strip characters that break the outline grammar from one node label."""
    label = text.strip()
    label = _LEADING_BULLET.sub("", label)
    label = _BREAKING_CHARS.sub(" ", label)
    label = label.replace("&", " and ").replace("#", " ")
    return re.sub(r"\s+", " ", label).strip()


def sanitize_mindmap(chart: str) -> str:
    """
    Return an outline with one header line and exactly one root.

    The first surviving label becomes the root at a fixed shallow indent. Later lines
    indented two spaces or less would read as extra roots, so they are pushed to four
    spaces; deeper lines keep their indentation.
    """
    text = (chart or "").strip()
    text = _OPENING_FENCE.sub("", text)
    text = _CLOSING_FENCE.sub("", text).strip()

    lines = [HEADER]
    root_found = False

    for raw_line in text.splitlines():
        if not raw_line.strip():
            continue
        if raw_line.strip().lower() == HEADER:
            continue

        label = clean_label(raw_line)
        if not label:
            continue

        if not root_found:
            lines.append(ROOT_INDENT + label)
            root_found = True
            continue

        indent = raw_line[:len(raw_line) - len(raw_line.lstrip())].replace("\t", CHILD_INDENT)
        if len(indent) <= len(ROOT_INDENT):
            indent = CHILD_INDENT
        lines.append(indent + label)

    if not root_found:
        lines.append(ROOT_INDENT + "Overview")

    return "\n".join(lines)
