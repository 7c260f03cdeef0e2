"""
Fill report logger.

Writes every FillReport as a JSON file into logs/form_fills/ and reads the
most recent ones back for the management API.
"""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional
from urllib.parse import urlparse

from autofill import config

logger = logging.getLogger(__name__)


class FormLogger:
    """Report sink that keeps one JSON file per fill session."""

    def __init__(self, log_dir: Optional[Path] = None):
        self.log_dir = Path(log_dir or config.LOGS_DIR)
        self.log_dir.mkdir(parents=True, exist_ok=True)

    def _filename(self, url: str) -> str:
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
        site_slug = "unknown"
        if url:
            domain = urlparse(url).netloc
            if domain:
                site_slug = domain.replace("www.", "").split(".")[0][:20]
        return f"{timestamp}_{site_slug}.json"

    def report(self, report) -> str:
        """Save a FillReport. Returns the log file path."""
        filepath = self.log_dir / self._filename(report.url)
        with open(filepath, "w", encoding="utf-8") as f:
            json.dump(report.to_dict(), f, indent=2, ensure_ascii=False)
        logger.info(f"Fill report saved: {filepath}")
        return str(filepath)

    def get_recent_logs(self, n: int = 10) -> List[Dict]:
        """Get the N most recent reports, newest first."""
        log_files = sorted(self.log_dir.glob("*.json"), reverse=True)[:n]

        logs = []
        for filepath in log_files:
            try:
                with open(filepath, encoding="utf-8") as f:
                    log = json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                logger.warning(f"Unreadable fill report {filepath}: {e}")
                continue
            log["_filepath"] = str(filepath)
            logs.append(log)
        return logs

    def get_log_summary(self) -> Dict:
        """Summary statistics over the last 100 reports."""
        logs = self.get_recent_logs(100)
        total_filled = sum(l.get("filled_count", 0) for l in logs)
        total_fields = sum(l.get("total_count", 0) for l in logs)
        return {
            "total_forms": len(logs),
            "total_fields": total_fields,
            "total_fields_filled": total_filled,
            "fill_rate": round(total_filled / total_fields, 3) if total_fields else 0,
            "total_missing": sum(len(l.get("missing_fields", [])) for l in logs),
        }
