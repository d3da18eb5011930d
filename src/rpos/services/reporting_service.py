from __future__ import annotations

import logging
from typing import Optional

from openpyxl import Workbook
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.table import Table, TableStyleInfo

log = logging.getLogger(__name__)

ORDER_EXPORT_HEADERS = [
    "Order Number", "Order Date",
    "Customer Name", "Customer Mobile", "Customer Address",
    "Item Name", "Item SN/Barcode",
    "Item Price", "Item Quantity", "Item Subtotal",
    "Order Subtotal", "Order Tax", "Order Total",
]


class ReportingService:
    def __init__(self, repo):
        self.repo = repo

    def export_orders_excel(self, path: str, start_iso: Optional[str] = None, end_iso: Optional[str] = None) -> int:
        """One row per order line, newest order first. Returns the number of data rows."""
        wb = Workbook()

        def money(cell):
            cell.number_format = "#,##0.00"

        orders = self.repo.list_orders_between(start_iso, end_iso)

        ws = wb.active
        ws.title = "Orders"
        ws.append(ORDER_EXPORT_HEADERS)
        for c in ws[1]:
            c.font = Font(bold=True)

        out_row = 2
        for order in orders:
            for it in order.items:
                ws.append([
                    order.order_number, order.order_date,
                    order.customer_name, order.customer_mobile, order.customer_address or "N/A",
                    it.name, it.serial_number or it.barcode or "N/A",
                    float(it.price), int(it.bill_quantity), float(it.line_total),
                    float(order.subtotal), float(order.tax_amount), float(order.total_amount),
                ])
                for col in ("H", "J", "K", "L", "M"):
                    money(ws[f"{col}{out_row}"])
                out_row += 1

        ws.freeze_panes = "A2"
        widths = [22, 24, 24, 16, 30, 34, 18, 12, 8, 14, 14, 12, 14]
        for idx, w in enumerate(widths, start=1):
            ws.column_dimensions[get_column_letter(idx)].width = w

        if ws.max_row >= 2:
            ref = f"A1:{get_column_letter(len(ORDER_EXPORT_HEADERS))}{ws.max_row}"
            tab = Table(displayName="OrdersDetail", ref=ref)
            tab.tableStyleInfo = TableStyleInfo(name="TableStyleMedium9", showRowStripes=True, showColumnStripes=False)
            ws.add_table(tab)

        wb.save(path)
        rows = out_row - 2
        log.info("orders_exported path=%s orders=%s rows=%s", path, len(orders), rows)
        return rows
