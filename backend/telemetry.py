"""Guardian telemetry: protocol-anomaly event log and summary reader."""

import json
import logging
from collections import deque
from datetime import datetime, timezone, timedelta
from pathlib import Path
from typing import Optional

from text_utils import normalize_whitespace

logger = logging.getLogger(__name__)


class GuardianTelemetry:
    """Append-only JSONL log of interlock decisions and loop anomalies."""

    def __init__(self, path: Path, enabled: bool = True):
        self.path = Path(path)
        self.enabled = enabled

    @classmethod
    def from_settings(cls, settings) -> "GuardianTelemetry":
        return cls(settings.telemetry_path, settings.telemetry_enabled)

    def record(self, event: str, payload: Optional[dict] = None) -> None:
        if not self.enabled:
            return
        try:
            data = {
                "ts": datetime.now(timezone.utc).isoformat(),
                "event": normalize_whitespace(event or "event"),
                "payload": payload or {},
            }
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(json.dumps(data, ensure_ascii=False, default=str) + "\n")
        except OSError as exc:
            # Telemetry must never break a chat request.
            logger.warning("telemetry.write_failed", extra={"error": str(exc)})

    def summary(self, hours: int = 24, limit: int = 6) -> dict:
        h = max(1, min(168, int(hours or 24)))
        n = max(1, min(25, int(limit or 6)))
        now_utc = datetime.now(timezone.utc)
        cutoff = now_utc - timedelta(hours=h)

        counts: dict[str, int] = {}
        block_reason_counts: dict[str, int] = {}
        recent: deque = deque(maxlen=n)
        parse_errors = 0
        file_exists = self.path.exists()

        if file_exists:
            with open(self.path, "r", encoding="utf-8") as f:
                for line in f:
                    raw = (line or "").strip()
                    if not raw:
                        continue
                    try:
                        item = json.loads(raw)
                    except ValueError:
                        parse_errors += 1
                        continue
                    ts = _parse_iso_utc(str(item.get("ts") or ""))
                    if not ts or ts < cutoff:
                        continue
                    event = normalize_whitespace(str(item.get("event") or "event")) or "event"
                    counts[event] = counts.get(event, 0) + 1
                    payload = item.get("payload") if isinstance(item.get("payload"), dict) else {}
                    if event in ("tool_blocked", "end_turn_blocked", "end_turn_fail_open"):
                        reason = normalize_whitespace(str(payload.get("reason") or "")) or "UNKNOWN"
                        block_reason_counts[reason] = block_reason_counts.get(reason, 0) + 1
                    recent.append({"ts": ts.isoformat(), "event": event, "payload": payload})

        publishes = counts.get("publish_success", 0)
        failures = counts.get("publish_failed", 0)
        attempts = publishes + failures
        failure_rate = round((failures / attempts) * 100.0, 2) if attempts > 0 else 0.0

        return {
            "status": "ok",
            "now_utc": now_utc.isoformat(),
            "window_hours": h,
            "telemetry_enabled": self.enabled,
            "file_exists": file_exists,
            "file_path": str(self.path.name),
            "counts": counts,
            "block_reason_counts": block_reason_counts,
            "publish_failure_rate_percent": failure_rate,
            "fail_open_count": counts.get("end_turn_fail_open", 0),
            "truncated_count": counts.get("loop_truncated", 0),
            "recent": list(recent),
            "parse_errors": parse_errors,
        }


def _parse_iso_utc(ts_raw: str) -> Optional[datetime]:
    try:
        return datetime.fromisoformat(str(ts_raw).replace("Z", "+00:00"))
    except ValueError:
        return None
