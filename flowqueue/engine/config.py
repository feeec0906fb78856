#!/usr/bin/env python3
"""
Queue Engine Configuration Reader

Reads project-specific configuration from the consuming project's
.flowqueue/config.yaml. The engine has sensible defaults for every setting and
the file is optional.

Example:

    database:
      path: .flowqueue/queue.db
    queues:
      default_max_parallel_items: 2
      task_priority_offset: 1
    cleanup:
      max_age_days: 7
      dead_letter_max_attempts: 3
    health:
      stuck_threshold_minutes: 60
    logging:
      level: INFO
      file: logs/flowqueue.log

Environment overrides (applied after the file):
    FLOWQUEUE_DB         - database path
    FLOWQUEUE_LOG_LEVEL  - logging level
"""

import os
from pathlib import Path
from typing import Any

import yaml

from .models import QueueConfig

CONFIG_DIR = ".flowqueue"
CONFIG_FILE = "config.yaml"


def _positive_int(section: dict[str, Any], key: str, default: int) -> int:
    value = int(section.get(key, default))
    if value < 1:
        raise ValueError(f"Config value '{key}' must be >= 1, got {value}")
    return value


def parse_queue_config(config_doc: dict[str, Any], project_root: str | Path = ".") -> QueueConfig:
    """
    Build a QueueConfig from a parsed config.yaml document.

    Relative paths (database, log file) are resolved against project_root.
    """
    project_root = Path(project_root)

    db_section = config_doc.get("database") or {}
    db_path = db_section.get("path", QueueConfig.db_path)

    queues_section = config_doc.get("queues") or {}
    default_max_parallel_items = _positive_int(queues_section, "default_max_parallel_items", 1)
    task_priority_offset = int(queues_section.get("task_priority_offset", 1))

    cleanup_section = config_doc.get("cleanup") or {}
    cleanup_max_age_days = _positive_int(cleanup_section, "max_age_days", 7)
    dead_letter_max_attempts = _positive_int(cleanup_section, "dead_letter_max_attempts", 3)

    health_section = config_doc.get("health") or {}
    stuck_threshold_minutes = _positive_int(health_section, "stuck_threshold_minutes", 60)

    logging_section = config_doc.get("logging") or {}
    log_level = str(logging_section.get("level", "INFO")).upper()
    log_file = logging_section.get("file")

    # Environment wins over the file
    db_path = os.getenv("FLOWQUEUE_DB", db_path)
    log_level = os.getenv("FLOWQUEUE_LOG_LEVEL", log_level).upper()

    if not Path(db_path).is_absolute():
        db_path = str(project_root / db_path)
    if log_file and not Path(log_file).is_absolute():
        log_file = str(project_root / log_file)

    return QueueConfig(
        db_path=db_path,
        default_max_parallel_items=default_max_parallel_items,
        task_priority_offset=task_priority_offset,
        cleanup_max_age_days=cleanup_max_age_days,
        dead_letter_max_attempts=dead_letter_max_attempts,
        stuck_threshold_minutes=stuck_threshold_minutes,
        log_level=log_level,
        log_file=log_file,
    )


def load_queue_config(
    project_root: str | Path,
    config_yaml_path: str | Path | None = None,
) -> QueueConfig:
    """
    Load QueueConfig from .flowqueue/config.yaml.

    Args:
        project_root: Root of the consuming project.
        config_yaml_path: Override path for config.yaml (default: .flowqueue/config.yaml).

    Returns:
        QueueConfig with all settings resolved (defaults applied where missing).
    """
    project_root = Path(project_root)
    config_path = (
        Path(config_yaml_path) if config_yaml_path
        else project_root / CONFIG_DIR / CONFIG_FILE
    )

    config_doc: dict[str, Any] = {}
    if config_path.exists():
        config_doc = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
        if not isinstance(config_doc, dict):
            raise ValueError(f"{config_path} must contain a YAML mapping")

    return parse_queue_config(config_doc, project_root)


def find_project_root(start: Path | None = None) -> Path:
    """Walk up from start directory to find a .flowqueue/ directory."""
    current = start or Path.cwd()
    for candidate in [current] + list(current.parents):
        if (candidate / CONFIG_DIR).exists():
            return candidate
    return current  # fallback to cwd
