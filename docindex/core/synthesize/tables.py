import html
from typing import Dict, List
from docindex.models.layout import LayoutTable, LayoutTableCell

HEADER_KINDS = {"columnHeader", "rowHeader"}

class TableRenderer:
    """
    Renders layout tables as pipe-delimited text (node content) and HTML.
    Cells are grouped by row once per table and reused by both renderings.
    """

    def __init__(self):
        self._rows: Dict[int, Dict[int, List[LayoutTableCell]]] = {}

    def _rows_for(self, table: LayoutTable) -> Dict[int, List[LayoutTableCell]]:
        key = id(table)
        if key not in self._rows:
            by_row: Dict[int, List[LayoutTableCell]] = {}
            for cell in table.cells:
                by_row.setdefault(cell.row_index, []).append(cell)
            for cells in by_row.values():
                cells.sort(key=lambda c: c.column_index)
            self._rows[key] = by_row
        return self._rows[key]

    def to_text(self, table: LayoutTable) -> str:
        by_row = self._rows_for(table)
        rows = []
        for i in range(table.row_count):
            cells = by_row.get(i, [])
            rows.append(" | ".join(c.content.strip() for c in cells))
        return "\n".join(rows)

    def to_html(self, table: LayoutTable) -> str:
        by_row = self._rows_for(table)
        parts = ["<table>"]
        for i in range(table.row_count):
            parts.append("<tr>")
            for cell in by_row.get(i, []):
                tag = "th" if cell.kind in HEADER_KINDS else "td"
                attrs = ""
                if cell.column_span and cell.column_span > 1:
                    attrs += f' colspan="{cell.column_span}"'
                if cell.row_span and cell.row_span > 1:
                    attrs += f' rowspan="{cell.row_span}"'
                parts.append(f"<{tag}{attrs}>{html.escape(cell.content, quote=True)}</{tag}>")
            parts.append("</tr>")
        parts.append("</table>")
        return "".join(parts)
