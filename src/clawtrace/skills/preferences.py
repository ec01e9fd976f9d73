"""Per-project wrapping preferences stored in ``.clawtrace.json``."""

from __future__ import annotations

import json
import logging
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)

CONFIG_FILENAME = ".clawtrace.json"


class InitConfig(BaseModel):
    """Choices made during ``clawtrace init``."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    wrapped_skills: list[str] = Field(
        default_factory=list, description="Skills that should be traced."
    )
    excluded_skills: list[str] = Field(
        default_factory=list, description="Skills explicitly left untraced."
    )
    initialized: bool = Field(
        default=False, description="Whether init has been completed at least once."
    )


def read_init_config(root_dir: Path | None = None) -> InitConfig | None:
    """Return the project's init config, or ``None`` when absent or unreadable."""

    path = Path(root_dir or Path.cwd()) / CONFIG_FILENAME
    if not path.exists():
        return None
    try:
        return InitConfig.model_validate(json.loads(path.read_text(encoding="utf-8")))
    except (json.JSONDecodeError, ValidationError) as exc:
        logger.warning("Ignoring unreadable %s: %s", path, exc)
        return None


def write_init_config(config: InitConfig, root_dir: Path | None = None) -> Path:
    path = Path(root_dir or Path.cwd()) / CONFIG_FILENAME
    payload = config.model_dump(by_alias=True)
    path.write_text(json.dumps(payload, indent=2) + "\n", encoding="utf-8")
    return path


__all__ = ["CONFIG_FILENAME", "InitConfig", "read_init_config", "write_init_config"]
