"""Split regulatory text into sections by heading or article markers.

Recognised headings, each at the start of a line:
- ``Article 12`` (optionally followed by a title)
- ``3. Title``
- markdown ``#`` / ``##`` headings

When no heading is found the whole document is returned as one section
titled "Full Document".
"""

import re
from dataclasses import dataclass

_HEADING_PATTERN = re.compile(
    r"^[ \t]*(?:"
    r"Article\s+(?P<article>\d+)\b[ \t:.\-]*(?P<article_title>[^\n]*)"
    r"|(?P<number>\d+)\.[ \t]+(?P<number_title>[^\n]*)"
    r"|\#{1,2}[ \t]*(?P<markdown_title>[^\n]*)"
    r")$",
    re.MULTILINE | re.IGNORECASE,
)

_MAX_TITLE_LENGTH = 255


@dataclass(frozen=True)
class DocumentSection:
    """One section of a regulatory document.

    Attributes:
        section_id: Positional id, ``section-{n}``.
        title: Heading text, or a positional fallback.
        content: Section text including its heading line.
        article_number: Article or clause number when the heading carries one.
    """

    section_id: str
    title: str
    content: str
    article_number: str | None = None


def segment_document(text: str) -> list[DocumentSection]:
    """Split a document into sections.

    Text before the first heading becomes a "Preamble" section when it is
    not blank.

    Args:
        text: Raw regulatory text.

    Returns:
        Ordered list of sections, never empty.
    """
    matches = list(_HEADING_PATTERN.finditer(text))
    if not matches:
        return [DocumentSection(section_id="section-0", title="Full Document", content=text)]

    sections: list[DocumentSection] = []
    preamble = text[: matches[0].start()]
    if preamble.strip():
        sections.append(DocumentSection(section_id="section-0", title="Preamble", content=preamble))

    for position, match in enumerate(matches):
        end = matches[position + 1].start() if position + 1 < len(matches) else len(text)
        index = len(sections)
        article_number = match.group("article") or match.group("number")
        raw_title = (
            match.group("article_title") or match.group("number_title") or match.group("markdown_title") or ""
        ).strip()
        if not raw_title and match.group("article"):
            raw_title = f"Article {match.group('article')}"
        sections.append(
            DocumentSection(
                section_id=f"section-{index}",
                title=(raw_title or f"Section {index + 1}")[:_MAX_TITLE_LENGTH],
                content=text[match.start() : end],
                article_number=article_number,
            )
        )
    return sections
