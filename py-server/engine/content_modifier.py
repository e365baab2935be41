"""
Content Modifier

Text suppression for region renders. TextSuppressionFilter clears the
operands of text operators in a DrawOperation list; TextFreePageBuilder
applies it to a scratch single-page copy of the document (page stream and
every reachable form XObject) so the renderer paints graphics only.
"""

import io
import logging
from typing import Iterable, List, Set, Tuple

from pikepdf import Array, Dictionary, Name, Pdf, Stream, String, unparse_content_stream

from constants.pdf_keys import KEY_RESOURCES, KEY_SUBTYPE, KEY_XOBJECT, VAL_FORM
from constants.pdf_operators import TEXT_SUPPRESSED_KINDS, OperatorKind, OperatorTable
from engine.content_scanner import ContentStreamScanner
from models.engine_types import DrawOperation
from utils.pdf_transforms import find_inherited

logger = logging.getLogger(__name__)

# Operands that keep a cleared text operator well-formed while painting nothing
INERT_OPERANDS = {
    OperatorKind.SHOW_TEXT: (String(b""),),
    OperatorKind.SHOW_SPACED_TEXT: (Array([]),),
    OperatorKind.NEXT_LINE_SHOW_TEXT: (String(b""),),
    OperatorKind.NEXT_LINE_SET_SPACING_SHOW_TEXT: (0, 0, String(b"")),
    OperatorKind.SET_CHAR_SPACING: (0,),
    OperatorKind.SET_WORD_SPACING: (0,),
}


class TextSuppressionFilter:
    """
    Neutralizes text painting in an operation list.

    Operators are kept in place so BT/ET nesting stays balanced; only the
    operands of the suppressed kinds are emptied. Input operations are not
    modified, a new list is returned.
    """

    def __init__(self, operator_table: OperatorTable):
        self.operator_table = operator_table

    def suppress(self, operations: Iterable[DrawOperation]) -> List[DrawOperation]:
        suppressed = []
        cleared = 0
        for operation in operations:
            # Re-classify through our table; a scanner may use a different one
            kind = self.operator_table.kind_of(operation.code)
            if kind in TEXT_SUPPRESSED_KINDS:
                suppressed.append(operation.with_operands(()))
                cleared += 1
            else:
                suppressed.append(operation)

        logger.debug(f"Suppressed {cleared} of {len(suppressed)} operations")
        return suppressed


class TextFreePageBuilder:
    """
    Builds a one-page PDF whose content has all text suppressed.

    The source document is never touched: the bytes are re-opened, every
    other page is dropped, and the streams of the remaining page are
    rewritten in place. Cleared operators are written with empty strings
    or zeros so the scratch stream stays well-formed.
    """

    def __init__(self, scanner: ContentStreamScanner, text_filter: TextSuppressionFilter):
        self.scanner = scanner
        self.text_filter = text_filter

    def build(self, content: bytes, page_index: int) -> bytes:
        """
        Args:
            content: Raw bytes of the source PDF
            page_index: 0-based index of the page to keep

        Returns:
            Bytes of the single-page, text-free PDF
        """
        with Pdf.open(io.BytesIO(content)) as scratch:
            for index in reversed(range(len(scratch.pages))):
                if index != page_index:
                    del scratch.pages[index]

            page = scratch.pages[0]
            page.obj.Contents = scratch.make_stream(self._rewrite(page))

            forms_rewritten = self._rewrite_forms(page.obj, visited=set())
            if forms_rewritten:
                logger.debug(f"Rewrote {forms_rewritten} form XObject(s) without text")

            output = io.BytesIO()
            scratch.save(output)
            return output.getvalue()

    def _rewrite(self, target) -> bytes:
        operations = self.text_filter.suppress(self.scanner.scan(target))
        return unparse_content_stream([self._to_instruction(op) for op in operations])

    def _to_instruction(self, operation: DrawOperation):
        kind = self.text_filter.operator_table.kind_of(operation.code)
        if not operation.operands and kind in INERT_OPERANDS:
            return operation.with_operands(INERT_OPERANDS[kind]).to_instruction()
        return operation.to_instruction()

    def _rewrite_forms(self, owner: Dictionary, visited: Set[Tuple[int, int]]) -> int:
        """Rewrite each form XObject reachable from owner's resources, once per object."""
        resources = find_inherited(owner, KEY_RESOURCES)
        if resources is None or KEY_XOBJECT not in resources:
            return 0

        count = 0
        for name, xobject in resources[KEY_XOBJECT].items():
            if not isinstance(xobject, Stream) or xobject.get(KEY_SUBTYPE) != Name(VAL_FORM):
                continue

            key = xobject.objgen
            if key != (0, 0):
                if key in visited:
                    continue
                visited.add(key)

            try:
                xobject.write(self._rewrite(xobject))
            except Exception as e:
                logger.warning(f"Could not suppress text in form {name}: {e}")
                continue

            count += 1 + self._rewrite_forms(xobject, visited)
        return count

