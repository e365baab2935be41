"""
Content Stream Scanner

Decodes a page's (or form XObject's) content stream into DrawOperation
values classified through an injected OperatorTable.
"""

import logging
from typing import Iterator, Union

from pikepdf import Object, Page, parse_content_stream

from constants.pdf_operators import OperatorTable
from engine.pdf_engine import PageHandle
from models.engine_types import DrawOperation

logger = logging.getLogger(__name__)


class ContentStreamScanner:
    """
    Produces the drawing program of a page in source order.

    scan() returns a generator: nothing is parsed until the first item is
    requested, and the sequence can be consumed only once. Scan again for a
    second pass.
    """

    def __init__(self, operator_table: OperatorTable):
        self.operator_table = operator_table

    def scan(self, source: Union[PageHandle, Page, Object]) -> Iterator[DrawOperation]:
        """
        Args:
            source: PageHandle of an open engine, or a pikepdf Page or
                content-bearing stream (form XObject) to parse directly
        """
        if isinstance(source, PageHandle):
            target = source.engine.pikepdf_page(source)
        else:
            target = source
        return self._iter_operations(target)

    def _iter_operations(self, target) -> Iterator[DrawOperation]:
        instructions = parse_content_stream(target)
        logger.debug(f"Parsed {len(instructions)} content stream instructions")

        for index, instruction in enumerate(instructions):
            code = str(instruction.operator).encode('latin-1')
            yield DrawOperation(
                kind=self.operator_table.kind_of(code),
                code=code,
                operands=tuple(instruction.operands),
                index=index,
                source=instruction,
            )
