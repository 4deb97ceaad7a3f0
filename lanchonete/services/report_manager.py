"""
Excel Report Manager with Concurrency Control

Process-safe Excel operations for:
- Order report exports (one sheet per period, replaced on re-export)
- Reading reports back
- Integrity checks used by scripts/verify.py

Author: Khalil Bannouri
Version: 1.0.0
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

import pandas as pd
from filelock import FileLock, Timeout

from lanchonete.core.config import get_settings

logger = logging.getLogger(__name__)


class ReportManager:
    """Writes order reports to a single workbook guarded by a file lock."""

    ORDER_COLUMNS = [
        "order_id",
        "date_time",
        "customer_name",
        "customer_email",
        "table_number",
        "delivery_type",
        "delivery_address",
        "items",
        "notes",
        "total_amount",
        "payment_method",
        "payment_amount",
        "is_paid",
        "order_status",
        "exported_at",
    ]

    def __init__(
        self,
        data_dir: Optional[Path] = None,
        filename: Optional[str] = None,
        lock_timeout: Optional[int] = None,
    ):
        settings = get_settings()
        self.data_dir = Path(data_dir or settings.data_directory)
        self.report_file = self.data_dir / (filename or settings.report_filename)
        self.lock_file = self.data_dir / f"{self.report_file.name}.lock"
        self.lock_timeout = lock_timeout if lock_timeout is not None else settings.report_lock_timeout

    def _ensure_data_dir(self) -> None:
        """Create data directory if needed."""
        if not self.data_dir.exists():
            self.data_dir.mkdir(parents=True, exist_ok=True)
            logger.info(f"Created data directory: {self.data_dir}")

    def _load_sheets(self) -> dict[str, pd.DataFrame]:
        """Existing sheets of the workbook, or none if absent / unreadable."""
        if not self.report_file.exists():
            return {}
        try:
            return pd.read_excel(self.report_file, sheet_name=None, engine="openpyxl")
        except Exception as e:
            logger.warning(f"Error reading {self.report_file}: {e}")
            return {}

    @staticmethod
    def sheet_name(period: str, start: datetime) -> str:
        if period == "day":
            return start.strftime("%Y-%m-%d")
        if period == "month":
            return start.strftime("%Y-%m")
        return start.strftime("%Y")

    def export_orders(self, rows: list[dict[str, Any]], sheet: str) -> dict[str, Any]:
        """
        Write ``rows`` to ``sheet``, replacing that sheet and keeping the others.

        Args:
            rows: Flattened orders (see ``services.reports.order_rows``)
            sheet: Target sheet name

        Returns:
            dict with success, message, sheet, rows and exported_at
        """
        self._ensure_data_dir()

        result = {
            "success": False,
            "message": "",
            "sheet": sheet,
            "rows": len(rows),
            "exported_at": None,
        }

        try:
            lock = FileLock(str(self.lock_file), timeout=self.lock_timeout)

            with lock:
                logger.debug(f"Lock acquired for sheet {sheet}")

                sheets = self._load_sheets()

                export_time = datetime.now().isoformat()
                df = pd.DataFrame(
                    [{**row, "exported_at": export_time} for row in rows],
                    columns=self.ORDER_COLUMNS,
                )
                sheets[sheet] = df

                with pd.ExcelWriter(str(self.report_file), engine="openpyxl") as writer:
                    for name in sorted(sheets):
                        sheets[name].to_excel(writer, sheet_name=name, index=False)

                logger.info(f"📑 {len(rows)} orders exported to sheet {sheet}")

                result["success"] = True
                result["message"] = f"{len(rows)} orders exported to {sheet}"
                result["exported_at"] = export_time

            logger.debug(f"Lock released for sheet {sheet}")

        except Timeout:
            result["message"] = f"Lock timeout ({self.lock_timeout}s)"
            logger.error(f"Lock timeout for sheet {sheet}")

        return result

    def read_orders(self, sheet: str) -> list[dict[str, Any]]:
        """Rows of one sheet, empty when the sheet does not exist."""
        df = self._load_sheets().get(sheet)
        if df is None:
            return []
        return df.to_dict("records")

    def sheets(self) -> list[str]:
        return sorted(self._load_sheets())

    def verify(self) -> dict[str, Any]:
        """
        Integrity check of every sheet: expected columns, no duplicated
        order ids, no negative totals.
        """
        report = {"file": str(self.report_file), "exists": self.report_file.exists(), "sheets": {}, "ok": True}

        for name, df in self._load_sheets().items():
            issues = []
            missing = [c for c in self.ORDER_COLUMNS if c not in df.columns]
            if missing:
                issues.append(f"missing columns: {', '.join(missing)}")
            if "order_id" in df.columns:
                duplicated = df["order_id"][df["order_id"].duplicated()].tolist()
                if duplicated:
                    issues.append(f"duplicated order ids: {duplicated}")
            if "total_amount" in df.columns:
                negative = int((pd.to_numeric(df["total_amount"], errors="coerce") < 0).sum())
                if negative:
                    issues.append(f"{negative} negative totals")

            report["sheets"][name] = {"rows": len(df), "issues": issues}
            if issues:
                report["ok"] = False

        return report

    def clear(self) -> bool:
        """Delete the report and its lock file."""
        for f in (self.report_file, self.lock_file):
            if f.exists():
                f.unlink()
        logger.info("Report files cleared")
        return True
