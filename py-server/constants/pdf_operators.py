"""
PDF Operator Constants

Centralized definitions of the PDF content stream operators the engine
recognizes, plus the operator table that maps raw operator codes to the
kinds the scanner and the text filter dispatch on.

Reference: PDF 32000-1:2008 specification, Appendix A
"""

from enum import Enum
from types import MappingProxyType
from typing import Dict, FrozenSet, Mapping, Optional

# ==============================================================================
# Text Object and Text State Operators (PDF spec 9.3, 9.4)
# ==============================================================================
OP_BEGIN_TEXT = b'BT'            # Begin text object
OP_END_TEXT = b'ET'              # End text object
OP_SET_FONT = b'Tf'              # Set text font and size
OP_SET_CHAR_SPACING = b'Tc'      # Set character spacing
OP_SET_WORD_SPACING = b'Tw'      # Set word spacing

# ==============================================================================
# Text Positioning Operators (PDF spec 9.4.2)
# ==============================================================================
OP_MOVE_TEXT = b'Td'              # Move text position
OP_MOVE_TEXT_SET_LEADING = b'TD'  # Move text position and set leading
OP_SET_TEXT_MATRIX = b'Tm'        # Set text matrix and text line matrix
OP_NEXT_LINE = b'T*'              # Move to start of next text line

# ==============================================================================
# Text Showing Operators (PDF spec 9.4.3)
# ==============================================================================
OP_SHOW_TEXT = b'Tj'              # Show a text string
OP_SHOW_TEXT_ARRAY = b'TJ'        # Show text strings with positioning
OP_NEXT_LINE_SHOW_TEXT = b"'"     # Move to next line and show text
OP_SET_SPACING_SHOW_TEXT = b'"'   # Set spacing, move to next line, show text

# ==============================================================================
# XObject and Inline Image Operators (PDF spec 8.8, 8.9.7)
# ==============================================================================
OP_DO_XOBJECT = b'Do'                 # Invoke named XObject (image, form, etc.)
OP_INLINE_IMAGE = b'INLINE IMAGE'     # pikepdf's pseudo-operator for BI ... ID ... EI


class OperatorKind(str, Enum):
    """Operator kinds the engine distinguishes; everything else is OPAQUE."""
    SHOW_TEXT = "showText"
    SHOW_SPACED_TEXT = "showSpacedText"
    NEXT_LINE_SHOW_TEXT = "nextLineShowText"
    NEXT_LINE_SET_SPACING_SHOW_TEXT = "nextLineSetSpacingShowText"
    BEGIN_TEXT = "beginText"
    END_TEXT = "endText"
    SET_CHAR_SPACING = "setCharSpacing"
    SET_WORD_SPACING = "setWordSpacing"
    MOVE_TEXT = "moveText"
    MOVE_TEXT_SET_LEADING = "moveTextSetLeading"
    SET_TEXT_MATRIX = "setTextMatrix"
    NEXT_LINE = "nextLine"
    PAINT_XOBJECT = "paintXObject"
    PAINT_INLINE_IMAGE = "paintInlineImage"
    OPAQUE = "opaque"


# Kinds whose operands are cleared so a replay paints no glyphs
TEXT_SUPPRESSED_KINDS: FrozenSet[OperatorKind] = frozenset({
    OperatorKind.SHOW_TEXT,
    OperatorKind.SHOW_SPACED_TEXT,
    OperatorKind.NEXT_LINE_SHOW_TEXT,
    OperatorKind.NEXT_LINE_SET_SPACING_SHOW_TEXT,
    OperatorKind.BEGIN_TEXT,
    OperatorKind.END_TEXT,
    OperatorKind.SET_CHAR_SPACING,
    OperatorKind.SET_WORD_SPACING,
})


class OperatorTable:
    """
    Immutable mapping from raw operator codes to OperatorKind.

    Built once and handed to the scanner and the text filter, so both agree
    on the same classification and tests can supply their own table.
    """

    def __init__(self, entries: Mapping[bytes, OperatorKind]):
        self._entries: Mapping[bytes, OperatorKind] = MappingProxyType(dict(entries))

    def kind_of(self, code: bytes) -> OperatorKind:
        """Classify a raw operator code, defaulting to OPAQUE."""
        return self._entries.get(code, OperatorKind.OPAQUE)

    def code_for(self, kind: OperatorKind) -> Optional[bytes]:
        """Reverse lookup, mainly for diagnostics."""
        for code, entry_kind in self._entries.items():
            if entry_kind is kind:
                return code
        return None

    def __contains__(self, code: bytes) -> bool:
        return code in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def to_dict(self) -> Dict[str, str]:
        return {code.decode('latin-1'): kind.value for code, kind in self._entries.items()}

    def __repr__(self) -> str:
        return f"OperatorTable({len(self._entries)} operators)"


DEFAULT_OPERATOR_TABLE = OperatorTable({
    OP_SHOW_TEXT: OperatorKind.SHOW_TEXT,
    OP_SHOW_TEXT_ARRAY: OperatorKind.SHOW_SPACED_TEXT,
    OP_NEXT_LINE_SHOW_TEXT: OperatorKind.NEXT_LINE_SHOW_TEXT,
    OP_SET_SPACING_SHOW_TEXT: OperatorKind.NEXT_LINE_SET_SPACING_SHOW_TEXT,
    OP_BEGIN_TEXT: OperatorKind.BEGIN_TEXT,
    OP_END_TEXT: OperatorKind.END_TEXT,
    OP_SET_CHAR_SPACING: OperatorKind.SET_CHAR_SPACING,
    OP_SET_WORD_SPACING: OperatorKind.SET_WORD_SPACING,
    OP_MOVE_TEXT: OperatorKind.MOVE_TEXT,
    OP_MOVE_TEXT_SET_LEADING: OperatorKind.MOVE_TEXT_SET_LEADING,
    OP_SET_TEXT_MATRIX: OperatorKind.SET_TEXT_MATRIX,
    OP_NEXT_LINE: OperatorKind.NEXT_LINE,
    OP_DO_XOBJECT: OperatorKind.PAINT_XOBJECT,
    OP_INLINE_IMAGE: OperatorKind.PAINT_INLINE_IMAGE,
})
