"""
Excel Verification Script

Verifies data integrity of a workspace Excel export.
Run from project root: python scripts/verify.py <workspace_id>
"""

import argparse
import os
import sys
from datetime import datetime

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pandas as pd

from app.services.excel_manager import ExcelManager


def verify_excel(workspace_id: str) -> bool:
    """Check both sheets of a workspace export."""
    path = ExcelManager.workbook_path(workspace_id)

    print("=" * 60)
    print("🔍 EXCEL VERIFICATION REPORT")
    print("=" * 60)
    print(f"⏰ Timestamp: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print(f"📄 File: {path}")
    print("=" * 60)

    if not path.exists():
        print("\n❌ Excel file not found!")
        print("   Queue an export first: POST /api/workspace/export/excel")
        return False

    orders = pd.read_excel(path, sheet_name="orders", engine="openpyxl")
    bills = pd.read_excel(path, sheet_name="final_bills", engine="openpyxl")

    print(f"\n📊 STATISTICS:")
    print(f"   Orders: {len(orders)}")
    print(f"   Final bills: {len(bills)}")

    ok = True
    for name, df, columns in (
        ("orders", orders, ExcelManager.ORDER_COLUMNS),
        ("final_bills", bills, ExcelManager.BILL_COLUMNS),
    ):
        missing = [col for col in columns if col not in df.columns]
        if missing:
            ok = False
            print(f"\n⚠️ {name}: missing columns {missing}")
        else:
            print(f"✅ {name}: all columns present")

    if "order_id" in orders.columns:
        duplicates = orders["order_id"].duplicated().sum()
        if duplicates > 0:
            ok = False
            print(f"\n⚠️ {duplicates} duplicate order IDs found!")
        else:
            print("✅ No duplicate order IDs")

    if {"payment_status", "total_amount"} <= set(orders.columns):
        paid = orders[orders["payment_status"] == "PAID"]
        print(f"\n💰 REVENUE:")
        print(f"   Paid orders: {len(paid)}")
        print(f"   Total: {paid['total_amount'].sum():.2f}")

    if {"is_paid", "total_amount"} <= set(bills.columns) and len(bills) > 0:
        settled = bills[bills["is_paid"]]
        print(f"   Paid bills total: {settled['total_amount'].sum():.2f}")

    print("\n" + "=" * 60)
    print("✅ VERIFICATION COMPLETE" if ok else "⚠️ VERIFICATION FOUND PROBLEMS")
    print("=" * 60)
    return ok


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Verify a workspace Excel export")
    parser.add_argument("workspace_id")
    args = parser.parse_args()
    sys.exit(0 if verify_excel(args.workspace_id) else 1)
