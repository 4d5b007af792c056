"""
Report sinks for audit findings and repair records.

Audit and repair results are structured records; sinks decide where they
go. The CSV sink appends to one file per record kind using pandas.
"""

import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Protocol

import pandas as pd

logger = logging.getLogger(__name__)


class ReportSink(Protocol):
    """Destination for audit reports and repair records."""

    def emit_audit(self, report: Any) -> None:
        ...

    def emit_repair(self, record: Dict[str, Any]) -> None:
        ...


class InMemoryReportSink:
    """Keeps emitted reports in lists; used by tests and the HTTP layer."""

    def __init__(self):
        self._lock = threading.Lock()
        self.audits: List[Any] = []
        self.repairs: List[Dict[str, Any]] = []

    def emit_audit(self, report: Any) -> None:
        with self._lock:
            self.audits.append(report)

    def emit_repair(self, record: Dict[str, Any]) -> None:
        with self._lock:
            self.repairs.append(dict(record))


class CsvReportSink:
    """
    Appends audit findings and repair records to CSV files.

    Files:
        audit_findings.csv: One row per finding, tagged with the scan time.
        repair_log.csv: One row per before/after repair record.
    """

    AUDIT_FILE = "audit_findings.csv"
    REPAIR_FILE = "repair_log.csv"

    def __init__(self, report_dir: Path | str = "data/reports"):
        self.report_dir = Path(report_dir)
        self.report_dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    @property
    def audit_path(self) -> Path:
        return self.report_dir / self.AUDIT_FILE

    @property
    def repair_path(self) -> Path:
        return self.report_dir / self.REPAIR_FILE

    def _append(self, path: Path, df: pd.DataFrame) -> None:
        if df.empty:
            return
        with self._lock:
            if not path.exists():
                df.to_csv(path, index=False)
            else:
                columns = list(pd.read_csv(path, nrows=0).columns)
                if set(df.columns) <= set(columns):
                    df.reindex(columns=columns).to_csv(path, mode="a", header=False, index=False)
                else:
                    # New columns: rewrite once with the widened header
                    existing = pd.read_csv(path, dtype=str)
                    pd.concat([existing, df.astype(str)], ignore_index=True).to_csv(
                        path, index=False
                    )
        logger.debug(f"Appended {len(df)} rows to {path}")

    def emit_audit(self, report: Any) -> None:
        df = report.to_dataframe()
        df.insert(0, "scanned_at", report.scanned_at.isoformat())
        self._append(self.audit_path, df)
        logger.info(f"Wrote {len(report.findings)} audit findings to {self.audit_path}")

    def emit_repair(self, record: Dict[str, Any]) -> None:
        row = {"logged_at": datetime.now().isoformat(), **record}
        self._append(self.repair_path, pd.DataFrame([row]))

    def read_repairs(self) -> pd.DataFrame:
        if not self.repair_path.exists():
            return pd.DataFrame()
        return pd.read_csv(self.repair_path, dtype=str)
