"""X12 segment grammar shared by the 270 encoder and 271 decoder.

A segment is an identifier followed by elements, joined by the element
separator and closed by the segment terminator. Elements are addressed the
X12 way: ``segment.element(1)`` is the first element after the identifier.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Iterable, Optional

logger = logging.getLogger(__name__)

ELEMENT_SEPARATOR = "*"
SEGMENT_TERMINATOR = "~"
COMPONENT_SEPARATOR = ":"
REPETITION_SEPARATOR = "^"

# ISA is fixed width; the segment terminator sits right after ISA16
ISA_LENGTH = 106

_RESERVED = re.compile(r"[*~:^\r\n]")
_SEGMENT_ID = re.compile(r"^[A-Z][A-Z0-9]{1,2}$")


def clean_element(value: Optional[object]) -> str:
    """Render a value as an element, dropping delimiter characters."""
    if value is None:
        return ""
    return _RESERVED.sub("", str(value)).strip()


@dataclass(frozen=True)
class X12Segment:
    """One X12 segment.

    Attributes:
        segment_id: Segment identifier (e.g. "NM1")
        elements: Element values after the identifier
    """

    segment_id: str
    elements: tuple[str, ...] = field(default_factory=tuple)

    def element(self, position: int, default: str = "") -> str:
        """Element by X12 position (1-based); ``default`` when absent."""
        if position < 1 or position > len(self.elements):
            return default
        return self.elements[position - 1]

    def render(self, separator: str = ELEMENT_SEPARATOR) -> str:
        elements = list(self.elements)
        # Trailing empty elements are not transmitted
        while elements and elements[-1] == "":
            elements.pop()
        return separator.join([self.segment_id, *elements])

    @classmethod
    def of(cls, segment_id: str, *elements: object) -> "X12Segment":
        """Build a segment, cleaning each element."""
        return cls(segment_id, tuple(clean_element(e) for e in elements))

    @classmethod
    def parse(cls, text: str, separator: str = ELEMENT_SEPARATOR) -> Optional["X12Segment"]:
        """Parse one segment; None when the text is not a segment."""
        fields = text.strip().split(separator)
        segment_id = fields[0].strip()
        if not _SEGMENT_ID.match(segment_id):
            return None
        return cls(segment_id, tuple(fields[1:]))


def render_interchange(segments: Iterable[X12Segment], terminator: str = SEGMENT_TERMINATOR) -> str:
    """Join segments into interchange text, terminating every segment."""
    return "".join(f"{segment.render()}{terminator}" for segment in segments)


def detect_delimiters(raw: str) -> tuple[str, str]:
    """Return (element separator, segment terminator) of an interchange.

    Reads them from the fixed-width ISA header when present, otherwise falls
    back to ``*`` and ``~``.
    """
    text = raw.lstrip()
    if text.startswith("ISA") and len(text) > 3:
        element_sep = text[3]
        terminator = SEGMENT_TERMINATOR
        if len(text) >= ISA_LENGTH:
            candidate = text[ISA_LENGTH - 1]
            if not candidate.isalnum() and candidate not in (" ", element_sep):
                terminator = candidate
        return element_sep, terminator
    return ELEMENT_SEPARATOR, SEGMENT_TERMINATOR


def split_segments(raw: str) -> list[X12Segment]:
    """Split interchange text into segments.

    Segments are split on the detected terminator and on newlines. Text that
    does not look like a segment is skipped.
    """
    element_sep, terminator = detect_delimiters(raw)
    pieces = re.split(f"[{re.escape(terminator)}\\r\\n]", raw)

    segments = []
    for piece in pieces:
        if not piece.strip():
            continue
        segment = X12Segment.parse(piece, element_sep)
        if segment is None:
            logger.debug("Skipping non-segment text: %.40r", piece)
            continue
        segments.append(segment)
    return segments
