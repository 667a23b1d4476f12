"""
Module for writing a JSON log of each upload run.
"""
import json
import logging
from dataclasses import asdict
from datetime import datetime
from pathlib import Path
from typing import Optional

from .models import RunSummary, TransferConfig, UploadFailure

logger = logging.getLogger(__name__)


class RunTracker:
    """Records run requests and summaries, optionally to a log directory."""

    def __init__(self, log_dir: Optional[Path] = None):
        """Initialize the run tracker.

        Args:
            log_dir: Directory to store run logs. If None, logs to the logger only.
        """
        self.log_dir = log_dir
        if log_dir:
            log_dir.mkdir(parents=True, exist_ok=True)
        self.log_path: Optional[Path] = None

    def _new_log_path(self, client_id: str) -> Optional[Path]:
        """Get the path for the log file of a new run.

        Args:
            client_id: Client the run uploads for

        Returns:
            Path to the log file, or None if logging to memory
        """
        if not self.log_dir:
            return None

        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
        safe_id = "".join(c if c.isalnum() or c in "-_" else "_" for c in client_id)
        return self.log_dir / f"upload_{safe_id}_{timestamp}.json"

    def log_run_start(self, client_id: str, upload_root: Path, container: str,
                      config: TransferConfig, file_count: int) -> None:
        """Log the run request details.

        Args:
            client_id: Client the run uploads for
            upload_root: Local directory being uploaded
            container: Name of the destination container
            config: Transfer settings of the run
            file_count: Number of files found
        """
        log_data = {
            "timestamp": datetime.now().isoformat(),
            "client_id": client_id,
            "upload_root": str(upload_root),
            "container": container,
            "file_count": file_count,
            "config": asdict(config)
        }

        self.log_path = self._new_log_path(client_id)
        if self.log_path:
            with open(self.log_path, 'w') as f:
                json.dump({"request": log_data}, f, indent=2)

        logger.info(f"Uploading {file_count} file(s) from {upload_root} to container {container}")

    def log_run_summary(self, summary: RunSummary) -> None:
        """Log the summary of a finished run.

        Args:
            summary: RunSummary of the run
        """
        log_data = {
            "timestamp": datetime.now().isoformat(),
            "client_id": summary.client_id,
            "container": summary.container,
            "total_jobs": summary.total_jobs,
            "succeeded": summary.succeeded,
            "failed": summary.failed,
            "cancelled": summary.cancelled,
            "bytes_sent": summary.bytes_sent,
            "elapsed_seconds": summary.elapsed,
            "timed_out": summary.timed_out,
            "outcomes": [
                {
                    "file_name": o.file_name,
                    "success": o.success,
                    "error_kind": o.error_kind.value if isinstance(o, UploadFailure) else None,
                    "message": o.message if isinstance(o, UploadFailure) else None,
                    "bytes_sent": getattr(o, "bytes_sent", None),
                    "duration": getattr(o, "duration", None)
                }
                for o in summary.outcomes
            ]
        }

        if self.log_path:
            with open(self.log_path) as f:
                data = json.load(f)
            data["summary"] = log_data
            with open(self.log_path, 'w') as f:
                json.dump(data, f, indent=2)

        logger.info(
            f"Upload has been completed in {summary.elapsed:.2f} seconds: "
            f"{summary.succeeded}/{summary.total_jobs} files uploaded successfully"
        )
        if summary.failed:
            logger.warning(f"{summary.failed} file(s) failed to upload ({summary.cancelled} cancelled)")
