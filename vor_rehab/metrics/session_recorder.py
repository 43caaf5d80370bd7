"""
Session Recorder
Accumulates one row per processed frame and serializes the session to CSV.
"""

import csv
import io
import math
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from vor_rehab import constants as const
from vor_rehab.metrics.kinematics import MetricsSnapshot
from vor_rehab.session_context import SessionContext


class ExportStatus(Enum):
    OK = "ok"
    EMPTY = "empty"


@dataclass
class ExportResult:
    """Outcome of an export request"""
    status: ExportStatus
    data: Optional[bytes] = None
    row_count: int = 0
    filename: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == ExportStatus.OK


def export_filename(prefix: str = const.EXPORT_FILE_PREFIX, now: Optional[datetime] = None,
                    extension: str = "csv") -> str:
    """File name with an ISO timestamp; ':' and '.' are replaced by '_'."""
    stamp = (now or datetime.now()).isoformat().replace(':', '_').replace('.', '_')
    return f"{prefix}_{stamp}.{extension}"


def _format_number(value: Optional[float], decimals: int) -> str:
    if value is None:
        return ''
    value = float(value)
    if not math.isfinite(value):
        return ''
    return f"{value:.{decimals}f}"


def snapshot_to_row(snapshot: MetricsSnapshot, decimals: int = const.EXPORT_DECIMALS) -> Dict[str, str]:
    """Flatten a snapshot into export columns (all values as strings)."""
    return {
        'timestamp': _format_number(snapshot.t, decimals),
        'level': '' if snapshot.level is None else str(int(snapshot.level)),
        'gazeX': _format_number(snapshot.gaze_x, decimals),
        'gazeY': _format_number(snapshot.gaze_y, decimals),
        'headAngle': _format_number(snapshot.head_angle, decimals),
        'headVel': _format_number(snapshot.head_vel, decimals),
        'eyeVel': _format_number(snapshot.eye_vel, decimals),
        'vorGain': _format_number(snapshot.vor_gain, decimals),
        'latencyMs': _format_number(snapshot.latency_ms, decimals),
        'fixationRMS': _format_number(snapshot.fixation_rms, decimals),
        'saccadeCount': str(int(snapshot.saccade_count)),
        'onTarget': 'true' if snapshot.on_target else 'false',
    }


def parse_export(data: bytes) -> List[Dict[str, Any]]:
    """
    Parse an export back into typed rows. Empty cells become None.
    """
    int_columns = {'level', 'saccadeCount'}
    rows = []
    reader = csv.DictReader(io.StringIO(data.decode('utf-8')))
    for raw in reader:
        row: Dict[str, Any] = {}
        for key, value in raw.items():
            if value is None or value == '':
                row[key] = None
            elif key == 'onTarget':
                row[key] = value.strip().lower() == 'true'
            elif key in int_columns:
                row[key] = int(value)
            else:
                row[key] = float(value)
        rows.append(row)
    return rows


class SessionRecorder:
    """
    In-memory, ordered record of a session's snapshots.

    Rows are only accepted while the context reports an active session.
    """

    def __init__(self, columns=const.EXPORT_COLUMNS, decimals: int = const.EXPORT_DECIMALS,
                 file_prefix: str = const.EXPORT_FILE_PREFIX):
        self.columns = tuple(columns)
        self.decimals = decimals
        self.file_prefix = file_prefix
        self.logger = logging.getLogger(__name__)
        self._rows: List[MetricsSnapshot] = []

    def __len__(self) -> int:
        return len(self._rows)

    @property
    def rows(self) -> List[MetricsSnapshot]:
        return list(self._rows)

    def record(self, snapshot: MetricsSnapshot, context: SessionContext) -> bool:
        """Append a snapshot if the session is active. Returns True if stored."""
        if not context.session_active:
            return False
        self._rows.append(snapshot)
        return True

    def clear(self):
        self._rows.clear()

    def export(self) -> ExportResult:
        """
        Serialize all rows to CSV bytes with a stable column order.

        Returns:
            ExportResult; status EMPTY (and no data) if nothing was recorded
        """
        if not self._rows:
            self.logger.warning("Export requested but no frames were recorded")
            return ExportResult(status=ExportStatus.EMPTY)

        buffer = io.StringIO()
        writer = csv.DictWriter(buffer, fieldnames=list(self.columns), lineterminator='\n',
                                extrasaction='ignore')
        writer.writeheader()
        for snapshot in self._rows:
            writer.writerow(snapshot_to_row(snapshot, self.decimals))

        return ExportResult(
            status=ExportStatus.OK,
            data=buffer.getvalue().encode('utf-8'),
            row_count=len(self._rows),
            filename=export_filename(self.file_prefix),
        )

    def write(self, directory: str = "exports") -> Optional[Path]:
        """Write the export to `directory`. Returns the path, or None if empty."""
        result = self.export()
        if not result.ok:
            return None

        out_dir = Path(directory)
        out_dir.mkdir(parents=True, exist_ok=True)
        path = out_dir / result.filename
        path.write_bytes(result.data)
        self.logger.info(f"Exported {result.row_count} rows to {path}")
        return path
