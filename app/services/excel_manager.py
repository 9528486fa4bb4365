"""
Excel Export Manager with Concurrency Control

File-locked Excel exports of a workspace's orders and final bills.
One workbook per workspace, with an "orders" sheet and a
"final_bills" sheet, rewritten on every export.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Any

import pandas as pd
from filelock import FileLock, Timeout

from app.core.config import get_settings

logger = logging.getLogger(__name__)


class ExcelManager:
    """Lock-guarded Excel writer for workspace exports."""

    ORDER_COLUMNS = [
        "order_id",
        "date_time",
        "table_number",
        "customer_name",
        "customer_phone",
        "items",
        "total_amount",
        "order_status",
        "payment_status",
        "payment_method",
        "status_reason",
    ]

    BILL_COLUMNS = [
        "bill_id",
        "date_time",
        "table_number",
        "customer_name",
        "customer_phone",
        "order_ids",
        "total_amount",
        "is_paid",
        "payment_method",
        "paid_at",
    ]

    @classmethod
    def data_dir(cls) -> Path:
        return Path(get_settings().data_directory)

    @classmethod
    def workbook_path(cls, workspace_id: str) -> Path:
        return cls.data_dir() / f"workspace-{workspace_id}.xlsx"

    @classmethod
    def _ensure_data_dir(cls) -> None:
        """Create data directory if needed."""
        data_dir = cls.data_dir()
        if not data_dir.exists():
            data_dir.mkdir(parents=True, exist_ok=True)
            logger.info(f"Created data directory: {data_dir}")

    @staticmethod
    def _items_text(items: list[dict]) -> str:
        return ", ".join(
            f"{item['quantity']}x {item['name']}" + (" (cancelled)" if item.get("is_cancelled") else "")
            for item in items
        )

    @classmethod
    def order_rows(cls, orders: list[dict]) -> list[dict]:
        return [
            {
                "order_id": o["id"],
                "date_time": o.get("created_at"),
                "table_number": o.get("table_number"),
                "customer_name": o.get("customer_name"),
                "customer_phone": o.get("customer_phone"),
                "items": cls._items_text(o.get("items") or []),
                "total_amount": float(o.get("total_amount") or 0),
                "order_status": o.get("status"),
                "payment_status": o.get("payment_status"),
                "payment_method": o.get("payment_method"),
                "status_reason": o.get("status_reason"),
            }
            for o in orders
        ]

    @classmethod
    def bill_rows(cls, bills: list[dict]) -> list[dict]:
        return [
            {
                "bill_id": b["id"],
                "date_time": b.get("created_at"),
                "table_number": b.get("table_number"),
                "customer_name": b.get("customer_name"),
                "customer_phone": b.get("customer_phone"),
                "order_ids": ", ".join(f"#{i}" for i in b.get("order_ids") or []),
                "total_amount": float(b.get("total_amount") or 0),
                "is_paid": bool(b.get("is_paid")),
                "payment_method": b.get("payment_method"),
                "paid_at": b.get("paid_at"),
            }
            for b in bills
        ]

    @classmethod
    def export_workspace(cls, export_data: dict[str, Any]) -> dict[str, Any]:
        """Write the workspace workbook under a file lock."""
        cls._ensure_data_dir()

        workspace_id = export_data["workspace"]["id"]
        target = cls.workbook_path(workspace_id)
        lock_path = f"{target}.lock"
        timeout = get_settings().excel_lock_timeout

        result = {
            "success": False,
            "message": "",
            "workspace_id": workspace_id,
            "path": None,
            "exported_at": None,
        }

        try:
            with FileLock(lock_path, timeout=timeout):
                logger.debug(f"Lock acquired for workspace {workspace_id}")

                orders_df = pd.DataFrame(
                    cls.order_rows(export_data.get("orders") or []),
                    columns=cls.ORDER_COLUMNS,
                )
                bills_df = pd.DataFrame(
                    cls.bill_rows(export_data.get("final_bills") or []),
                    columns=cls.BILL_COLUMNS,
                )

                with pd.ExcelWriter(str(target), engine="openpyxl") as writer:
                    orders_df.to_excel(writer, sheet_name="orders", index=False)
                    bills_df.to_excel(writer, sheet_name="final_bills", index=False)

                export_time = datetime.now().isoformat()
                logger.info(
                    f"Workspace {workspace_id} exported to Excel "
                    f"({len(orders_df)} orders, {len(bills_df)} bills)"
                )

                result["success"] = True
                result["message"] = f"Exported {len(orders_df)} orders and {len(bills_df)} final bills"
                result["path"] = str(target)
                result["exported_at"] = export_time

            logger.debug(f"Lock released for workspace {workspace_id}")

        except Timeout:
            result["message"] = f"Lock timeout ({timeout}s)"
            logger.error(f"Lock timeout for workspace {workspace_id}")

        except OSError as e:
            result["message"] = str(e)
            logger.exception(f"Error exporting workspace {workspace_id}")

        return result

    @classmethod
    def read_sheet(cls, workspace_id: str, sheet: str) -> list[dict[str, Any]]:
        """Rows of one sheet of a previously exported workbook."""
        target = cls.workbook_path(workspace_id)
        if not target.exists():
            return []
        df = pd.read_excel(target, sheet_name=sheet, engine="openpyxl")
        return df.to_dict("records")
