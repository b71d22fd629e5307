"""JSONL event log for routing observability."""

import json
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any


@dataclass
class LogEntry:
    """A single log entry."""

    timestamp: str
    event: str
    conversation_id: str | None = None
    branch_id: str | None = None
    action: str | None = None
    duration_ms: float | None = None
    reason_codes: list[str] | None = None
    error: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict, excluding None values."""
        data = asdict(self)
        return {k: v for k, v in data.items() if v is not None and v != {} and v != []}


class JSONLLogger:
    """Logger that writes structured routing events in JSONL format."""

    def __init__(
        self,
        log_dir: str | Path | None = None,
        filename: str = "drift.jsonl",
        max_size_mb: float = 10.0,
    ) -> None:
        if log_dir is None:
            log_dir = Path.home() / ".driftline" / "logs"
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.filename = filename
        self.max_size_bytes = int(max_size_mb * 1024 * 1024)

    @property
    def log_path(self) -> Path:
        """Current log file path."""
        return self.log_dir / self.filename

    def _rotate_if_needed(self) -> None:
        """Rotate log file if it exceeds max size."""
        if not self.log_path.exists():
            return

        if self.log_path.stat().st_size >= self.max_size_bytes:
            timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S_%f")
            rotated_name = f"{self.log_path.stem}_{timestamp}.jsonl"
            self.log_path.rename(self.log_dir / rotated_name)

    def _write(self, entry: LogEntry) -> None:
        """Write a log entry to the file."""
        self._rotate_if_needed()

        with open(self.log_path, "a", encoding="utf-8") as f:
            f.write(json.dumps(entry.to_dict(), ensure_ascii=False) + "\n")

    def log(
        self,
        event: str,
        *,
        conversation_id: str | None = None,
        branch_id: str | None = None,
        action: str | None = None,
        duration_ms: float | None = None,
        reason_codes: list[str] | None = None,
        error: str | None = None,
        **extra: Any,
    ) -> None:
        """Log an event."""
        entry = LogEntry(
            timestamp=datetime.now(timezone.utc).isoformat(),
            event=event,
            conversation_id=conversation_id,
            branch_id=branch_id,
            action=action,
            duration_ms=duration_ms,
            reason_codes=reason_codes,
            error=error,
            extra=extra if extra else {},
        )
        self._write(entry)

    def log_route(
        self,
        conversation_id: str,
        action: str,
        branch_id: str,
        reason_codes: list[str],
        *,
        duration_ms: float | None = None,
        previous_branch_id: str | None = None,
        total_tokens: int | None = None,
    ) -> None:
        """Log a completed routing decision."""
        self.log(
            "route",
            conversation_id=conversation_id,
            branch_id=branch_id,
            action=action,
            duration_ms=duration_ms,
            reason_codes=reason_codes,
            previous_branch_id=previous_branch_id,
            total_tokens=total_tokens,
        )

    def log_stage_error(
        self,
        conversation_id: str,
        stage: str,
        error: str,
        reason_codes: list[str],
        *,
        duration_ms: float | None = None,
    ) -> None:
        """Log a pipeline stage failure."""
        self.log(
            "stage_error",
            conversation_id=conversation_id,
            duration_ms=duration_ms,
            reason_codes=reason_codes,
            error=error,
            stage=stage,
        )

    def log_fact_extraction(
        self,
        branch_id: str,
        success: bool,
        *,
        fact_count: int | None = None,
        duration_ms: float | None = None,
        error: str | None = None,
    ) -> None:
        """Log a background fact re-extraction."""
        self.log(
            "fact_extraction",
            branch_id=branch_id,
            duration_ms=duration_ms,
            error=error if not success else None,
            success=success,
            fact_count=fact_count,
        )


# Global logger instance
_logger: JSONLLogger | None = None


def get_logger() -> JSONLLogger:
    """Get the global logger instance."""
    global _logger
    if _logger is None:
        _logger = JSONLLogger()
    return _logger


def configure_logger(log_dir: str | Path | None = None, max_size_mb: float = 10.0) -> JSONLLogger:
    """Configure and return the global logger."""
    global _logger
    _logger = JSONLLogger(log_dir=log_dir, max_size_mb=max_size_mb)
    return _logger
