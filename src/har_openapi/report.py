"""
Run summary for recoverable conditions and metrics.
"""

import logging
from typing import Any, Dict, List, Optional

from .utils import format_duration


logger = logging.getLogger(__name__)


class RunReport:
    """
    Collects recoverable conditions met during a run.

    Nothing here interrupts processing: skipped entries, opaque bodies and
    schema conflicts are recorded as they happen and logged together by
    :meth:`log_summary` once the run is over.
    """

    def __init__(self):
        self.metrics = {
            "total_entries": 0,
            "skipped_entries": 0,
            "endpoints": 0,
            "opaque_bodies": 0,
            "schema_conflicts": 0,
            "input_size": 0,
            "output_size": 0,
        }
        self.issues: List[Dict[str, str]] = []

    def record(self, kind: str, message: str, warn: bool = True) -> None:
        """
        Record a recoverable condition.

        Args:
            kind: Short category name (e.g. ``skipped_entry``)
            message: Human-readable description
            warn: Also log the condition at WARNING level
        """
        self.issues.append({"kind": kind, "message": message})
        if warn:
            logger.warning(message)

    def skipped_entry(self, index: int, reason: str) -> None:
        self.metrics["skipped_entries"] += 1
        self.record("skipped_entry", f"Skipping entry {index}: {reason}")

    def opaque_body(self, where: str, reason: str) -> None:
        self.metrics["opaque_bodies"] += 1
        self.record("opaque_body", f"Treating body as opaque for {where}: {reason}")

    def schema_conflict(self, warning) -> None:
        # Conflicts are surfaced as union types, not as log noise per field
        self.metrics["schema_conflicts"] += 1
        self.record("schema_conflict", str(warning), warn=False)

    def issues_of(self, kind: str) -> List[Dict[str, str]]:
        return [issue for issue in self.issues if issue["kind"] == kind]

    def as_dict(self, sensitive_data_found: Optional[Dict[str, int]] = None) -> Dict[str, Any]:
        """
        Summarise the run as a plain dictionary.

        Args:
            sensitive_data_found: Optional sanitiser counters to include

        Returns:
            Dictionary suitable for JSON serialisation
        """
        summary = dict(self.metrics)
        summary["issues"] = len(self.issues)
        if sensitive_data_found is not None:
            summary["sensitive_data_found"] = dict(sensitive_data_found)
        return summary

    def log_summary(self, duration: float = None, sensitive_data_found: Optional[Dict[str, int]] = None) -> None:
        """
        Log the metrics and recoverable conditions after a run

        Args:
            duration: Time taken in seconds
            sensitive_data_found: Optional sanitiser counters
        """
        processed = self.metrics["total_entries"] - self.metrics["skipped_entries"]
        logger.info(f"Processed {processed} entries, skipped {self.metrics['skipped_entries']} entries")
        if duration is not None:
            logger.info(f"Time taken: {duration:.2f} seconds ({format_duration(duration)})")
        if self.metrics["endpoints"]:
            logger.info(f"Endpoints inferred: {self.metrics['endpoints']}")

        if sensitive_data_found is not None:
            logger.info(f"Sensitive data found: {sum(sensitive_data_found.values())} instances")
            for data_type, count in sensitive_data_found.items():
                if count > 0:
                    logger.info(f"  - {data_type}: {count}")

        if self.metrics["opaque_bodies"]:
            logger.warning(f"{self.metrics['opaque_bodies']} bodies could not be decoded and were treated as opaque")

        conflicts = self.issues_of("schema_conflict")
        if conflicts:
            logger.info(f"Schema conflicts emitted as union types: {len(conflicts)}")
            for issue in conflicts:
                logger.info(f"  - {issue['message']}")
