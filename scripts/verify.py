"""
Report Verification Script

Verifies data integrity of the Excel orders report.
Run from project root: python scripts/verify.py [--sheet 2026-10-19]

Author: Khalil Bannouri
Version: 1.0.0
"""

import argparse
import os
import sys
from datetime import datetime

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pandas as pd

from lanchonete.services.report_manager import ReportManager


def verify_report(sheet: str = None) -> bool:
    """Verify report integrity after an export."""
    manager = ReportManager()

    print("=" * 60)
    print("🔍 REPORT VERIFICATION")
    print("=" * 60)
    print(f"⏰ Timestamp: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print(f"📄 File: {manager.report_file}")
    print("=" * 60)

    # Check if file exists
    if not manager.report_file.exists():
        print("\n❌ Report file not found!")
        print("   Queue an export first: POST /api/admin/reports/export")
        return False

    result = manager.verify()
    sheets = [sheet] if sheet else sorted(result["sheets"])

    for name in sheets:
        info = result["sheets"].get(name)
        if info is None:
            print(f"\n⚠️ Sheet {name} not found")
            continue

        print(f"\n📊 SHEET {name}: {info['rows']} orders")
        if info["issues"]:
            for issue in info["issues"]:
                print(f"   ⚠️ {issue}")
        else:
            print("   ✅ Columns present, no duplicates, no negative totals")

        df = pd.DataFrame(manager.read_orders(name))
        if len(df) > 0:
            paid = df[df["is_paid"] == True]  # noqa: E712
            print(f"   💰 Revenue: R$ {df['total_amount'].sum():.2f} (paid R$ {paid['total_amount'].sum():.2f})")
            cols = ['order_id', 'customer_name', 'table_number', 'total_amount', 'order_status']
            print(df[cols].tail(5).to_string(index=False))

    print("\n" + "=" * 60)
    print("✅ VERIFICATION COMPLETE" if result["ok"] else "❌ VERIFICATION FOUND ISSUES")
    print("=" * 60)

    return result["ok"]


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Report Verification Script")
    parser.add_argument("--sheet", help="Only verify this sheet")
    args = parser.parse_args()

    sys.exit(0 if verify_report(args.sheet) else 1)
