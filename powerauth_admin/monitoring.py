from __future__ import annotations

import json
import threading
import time
from datetime import datetime, timezone
from pathlib import Path

from flask import current_app


_monitor_lock = threading.Lock()


def init_monitoring_storage(app) -> None:
    app.config.setdefault("APP_STARTED_AT", time.time())

    for key in ("SIEM_LOG", "ERROR_LOG"):
        path = Path(app.config[key])
        path.parent.mkdir(parents=True, exist_ok=True)
        if not path.exists():
            path.write_text("", encoding="utf-8")


def emit_event(
    event_type: str,
    severity: str = "info",
    message: str = "",
    **fields,
) -> None:
    row = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "event_type": str(event_type),
        "severity": str(severity).lower(),
        "message": str(message)[:240],
    }
    for key, value in fields.items():
        if value is None:
            continue
        if isinstance(value, (dict, list, int, float, bool)):
            row[key] = value
        else:
            row[key] = str(value)

    line = json.dumps(row, separators=(",", ":")) + "\n"
    siem_path = Path(current_app.config["SIEM_LOG"])
    with _monitor_lock:
        with siem_path.open("a", encoding="utf-8") as handle:
            handle.write(line)

        if row["severity"] in {"error", "critical"}:
            error_path = Path(current_app.config["ERROR_LOG"])
            with error_path.open("a", encoding="utf-8") as handle:
                handle.write(line)


def uptime_seconds() -> int:
    started = float(current_app.config.get("APP_STARTED_AT", time.time()))
    return max(0, int(time.time() - started))
