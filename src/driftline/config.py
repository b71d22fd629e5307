"""Drift routing configuration loader.

Loads configuration from ~/.driftline/config.json, overlays environment
variables, and provides the per-request routing policy.
"""

import json
import logging
import os
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path.home() / ".driftline" / "config.json"

DEFAULT_ROUTING_MODEL = "meta-llama/llama-4-scout-17b-16e-instruct"
DEFAULT_EXTRACTION_MODEL = "llama-3.1-8b-instant"
DEFAULT_MAX_BRANCHES = 10
DEFAULT_RECENT_MESSAGES = 5
DEFAULT_PIPELINE_TIMEOUT = 10.0


@dataclass(frozen=True)
class DriftPolicy:
    """Per-request routing policy.

    Attributes:
        max_branches_for_context: Upper bound on branch summaries shown to the classifier.
        recent_messages: Size of the same-role continuity window from the current branch.
    """

    max_branches_for_context: int = DEFAULT_MAX_BRANCHES
    recent_messages: int = DEFAULT_RECENT_MESSAGES


@dataclass
class DriftConfig:
    """Configuration for the drift routing service.

    Attributes:
        routing_model: Model used for STAY/ROUTE/BRANCH classification.
        extraction_model: Model used for background fact re-extraction.
        max_branches_for_context: Default bound on candidate branch summaries.
        recent_messages: Default continuity window size.
        pipeline_timeout: Overall time budget for one routing request, in seconds.
        extract_facts: Whether routing calls extract facts by default.
        db_path: SQLite database for persisted mode.
        log_dir: Directory for the JSONL event log.
        embedding_url: OpenAI-compatible embeddings endpoint, None disables embeddings.
        embedding_model: Model name sent to the embeddings endpoint.
    """

    routing_model: str = DEFAULT_ROUTING_MODEL
    extraction_model: str = DEFAULT_EXTRACTION_MODEL
    max_branches_for_context: int = DEFAULT_MAX_BRANCHES
    recent_messages: int = DEFAULT_RECENT_MESSAGES
    pipeline_timeout: float = DEFAULT_PIPELINE_TIMEOUT
    extract_facts: bool = False
    db_path: Path | None = None
    log_dir: Path | None = None
    embedding_url: str | None = None
    embedding_model: str | None = None

    def __post_init__(self) -> None:
        """Validate config and set defaults."""
        if self.db_path is None:
            self.db_path = Path.home() / ".driftline" / "drift.db"

        if self.log_dir is None:
            self.log_dir = Path.home() / ".driftline" / "logs"

        if self.max_branches_for_context < 1:
            raise ValueError("max_branches_for_context must be at least 1")

        if self.recent_messages < 0:
            raise ValueError("recent_messages cannot be negative")

        if self.pipeline_timeout <= 0:
            raise ValueError("pipeline_timeout must be positive")

    def policy(self) -> DriftPolicy:
        """Build the default per-request policy from this config."""
        return DriftPolicy(
            max_branches_for_context=self.max_branches_for_context,
            recent_messages=self.recent_messages,
        )


def load_config(config_path: Path | None = None) -> DriftConfig:
    """Load DriftConfig from a JSON file.

    The config file should have this structure:
    ```json
    {
      "drift": {
        "routing_model": "meta-llama/llama-4-scout-17b-16e-instruct",
        "max_branches_for_context": 10,
        "pipeline_timeout": 10,
        "extract_facts": true
      }
    }
    ```

    Args:
        config_path: Path to config file. Uses DEFAULT_CONFIG_PATH if None.

    Returns:
        DriftConfig instance with loaded values.
    """
    path = config_path or DEFAULT_CONFIG_PATH

    if not path.exists():
        logger.debug("No config file at %s, using defaults", path)
        return DriftConfig()

    try:
        with open(path, "r") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        logger.warning("Invalid JSON in %s: %s. Using defaults.", path, e)
        return DriftConfig()
    except OSError as e:
        logger.warning("Cannot read %s: %s. Using defaults.", path, e)
        return DriftConfig()

    if not isinstance(data, dict):
        logger.warning("Config in %s is not an object. Using defaults.", path)
        return DriftConfig()

    return _parse_config(data)


def _positive_int(value: Any, default: int, minimum: int = 1) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < minimum:
        return default
    return value


def _parse_config(data: dict[str, Any]) -> DriftConfig:
    """Parse config dictionary into DriftConfig.

    Invalid values fall back to their defaults.
    """
    drift = data.get("drift", {})
    if not isinstance(drift, dict):
        drift = {}

    routing_model = drift.get("routing_model")
    if not isinstance(routing_model, str) or not routing_model.strip():
        routing_model = DEFAULT_ROUTING_MODEL

    extraction_model = drift.get("extraction_model")
    if not isinstance(extraction_model, str) or not extraction_model.strip():
        extraction_model = DEFAULT_EXTRACTION_MODEL

    timeout = drift.get("pipeline_timeout", DEFAULT_PIPELINE_TIMEOUT)
    if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0:
        timeout = DEFAULT_PIPELINE_TIMEOUT

    db_path = drift.get("db_path")
    log_dir = drift.get("log_dir")

    embedding_url = drift.get("embedding_url")
    if not isinstance(embedding_url, str) or not embedding_url:
        embedding_url = None

    embedding_model = drift.get("embedding_model")
    if not isinstance(embedding_model, str) or not embedding_model:
        embedding_model = None

    return DriftConfig(
        routing_model=routing_model,
        extraction_model=extraction_model,
        max_branches_for_context=_positive_int(
            drift.get("max_branches_for_context"), DEFAULT_MAX_BRANCHES
        ),
        recent_messages=_positive_int(
            drift.get("recent_messages"), DEFAULT_RECENT_MESSAGES, minimum=0
        ),
        pipeline_timeout=float(timeout),
        extract_facts=bool(drift.get("extract_facts", False)),
        db_path=Path(db_path).expanduser() if isinstance(db_path, str) else None,
        log_dir=Path(log_dir).expanduser() if isinstance(log_dir, str) else None,
        embedding_url=embedding_url,
        embedding_model=embedding_model,
    )


def _env_number(name: str, convert: Callable[[str], Any], default: Any) -> Any:
    """Read a positive number from the environment, keeping ``default`` if invalid."""
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        value = convert(raw)
    except ValueError:
        value = None
    if value is None or not value > 0:
        logger.warning("Ignoring invalid %s=%r, using %s", name, raw, default)
        return default
    return value


def config_from_env(base: DriftConfig | None = None) -> DriftConfig:
    """Overlay environment variables on top of a base config."""
    config = base or load_config()

    db_path = os.getenv("DRIFT_DB_PATH")

    return DriftConfig(
        routing_model=os.getenv("DRIFT_ROUTING_MODEL", config.routing_model),
        extraction_model=os.getenv("FACT_EXTRACTION_MODEL", config.extraction_model),
        max_branches_for_context=_env_number(
            "DRIFT_MAX_BRANCHES_CONTEXT", int, config.max_branches_for_context
        ),
        recent_messages=config.recent_messages,
        pipeline_timeout=_env_number("DRIFT_PIPELINE_TIMEOUT", float, config.pipeline_timeout),
        extract_facts=config.extract_facts,
        db_path=Path(db_path).expanduser() if db_path else config.db_path,
        log_dir=config.log_dir,
        embedding_url=os.getenv("EMBEDDING_URL", config.embedding_url or "") or None,
        embedding_model=os.getenv("EMBEDDING_MODEL", config.embedding_model or "") or None,
    )
