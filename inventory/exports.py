"""
Spreadsheet export of stocktake count sheets.
"""

from io import BytesIO
from typing import Any, Iterable

from django.utils import timezone
from openpyxl import Workbook
from openpyxl.styles import Font, PatternFill
from openpyxl.utils import get_column_letter

from .stocktakes import group_by_product


HEADER_FILL = PatternFill(start_color='D3D3D3', end_color='D3D3D3', fill_type='solid')
OVER_FILL = PatternFill(start_color='E6F7E6', end_color='E6F7E6', fill_type='solid')
UNDER_FILL = PatternFill(start_color='FFE6E6', end_color='FFE6E6', fill_type='solid')


class StocktakeExcelExporter:
    content_type = 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet'
    file_extension = 'xlsx'

    headers = ['#', 'SKU', 'Product', 'Variant', 'System Qty', 'Counted Qty', 'Difference', 'Note']

    def filename(self, session, discrepancies_only=False):
        suffix = '-discrepancies' if discrepancies_only else ''
        return f"{session.reference_number}{suffix}.{self.file_extension}"

    def export(self, session, items=None, discrepancies_only=False) -> bytes:
        """
        Count sheet as xlsx bytes.

        Products with variants get one row per variant followed by a total
        row carrying the product's difference; variant rows leave the
        difference blank because variants are reconciled together.
        """
        if items is None:
            items = session.items.select_related('product').order_by('product_name', 'variant_name')
        groups = group_by_product(items)
        if discrepancies_only:
            groups = [group for group in groups if group.diff]

        workbook = Workbook()
        sheet = workbook.active
        sheet.title = 'Stocktake'

        sheet.append([f"Stocktake {session.reference_number}"])
        sheet['A1'].font = Font(size=14, bold=True)
        sheet.append(['Warehouse', session.warehouse.name])
        sheet.append(['Status', session.get_status_display()])
        sheet.append(['Exported At', timezone.localtime().strftime('%Y-%m-%d %H:%M:%S')])
        sheet.append([])

        sheet.append(self.headers)
        header_row = sheet.max_row
        for cell in sheet[header_row]:
            cell.font = Font(bold=True)
            cell.fill = HEADER_FILL

        index = 0
        for group in groups:
            for item in group.items:
                index += 1
                sheet.append([
                    index,
                    item.product_sku,
                    item.product_name,
                    item.variant_name,
                    item.system_quantity,
                    item.actual_quantity,
                    None if group.has_variants else item.diff,
                    item.note,
                ])
            if group.has_variants:
                sheet.append([
                    None,
                    group.items[0].product.sku,
                    group.items[0].product_name,
                    'Total',
                    group.system_quantity,
                    group.counted_quantity,
                    group.diff,
                    None,
                ])
                for cell in sheet[sheet.max_row]:
                    cell.font = Font(bold=True)
            if group.diff:
                fill = OVER_FILL if group.diff > 0 else UNDER_FILL
                for cell in sheet[sheet.max_row]:
                    cell.fill = fill

        if session.status == 'completed':
            sheet.append([])
            sheet.append(['Over', session.over_total])
            sheet.append(['Under', session.under_total])
            sheet.append(['Total Difference', session.total_diff])

        self._auto_fit_columns([sheet])

        with BytesIO() as output:
            workbook.save(output)
            return output.getvalue()

    @staticmethod
    def _auto_fit_columns(sheets: Iterable[Any]) -> None:
        for sheet in sheets:
            for column_cells in sheet.columns:
                column = get_column_letter(column_cells[0].column)
                max_length = max(len(str(cell.value)) if cell.value is not None else 0 for cell in column_cells)
                sheet.column_dimensions[column].width = min(max_length + 2, 50)
