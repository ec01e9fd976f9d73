"""Find skill documents (``SKILL.md``) in a project."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import yaml

SKILL_DIRS = ("skills", "src/skills", "skill", "src/skill")
SKILL_DOCUMENT = "SKILL.md"
_FRONT_MATTER_DELIMITER = "---"


class SkillScanError(RuntimeError):
    """Raised when one or more skill documents have unparseable front matter."""


@dataclass(slots=True)
class DetectedSkill:
    name: str
    path: Path


def read_front_matter(path: Path) -> dict:
    """Return the YAML block between leading ``---`` lines, or ``{}``."""

    lines = path.read_text(encoding="utf-8").splitlines()
    if not lines or lines[0].strip() != _FRONT_MATTER_DELIMITER:
        return {}
    for index in range(1, len(lines)):
        if lines[index].strip() == _FRONT_MATTER_DELIMITER:
            document = yaml.safe_load("\n".join(lines[1:index]))
            return document if isinstance(document, dict) else {}
    return {}


def detect_skills(root_dir: Path | None = None) -> list[DetectedSkill]:
    """Scan the conventional skill directories under ``root_dir`` for ``SKILL.md`` files.

    The skill name comes from the front matter ``name`` when present, otherwise
    from the directory holding the document.
    """

    root = Path(root_dir or Path.cwd())
    skills: list[DetectedSkill] = []
    errors: list[str] = []

    for relative in SKILL_DIRS:
        base = root / relative
        if not base.is_dir():
            continue
        for path in sorted(base.rglob(SKILL_DOCUMENT)):
            if not path.is_file():
                continue
            try:
                front_matter = read_front_matter(path)
            except yaml.YAMLError as exc:
                errors.append(f"Failed to parse front matter in {path}: {exc}")
                continue
            name = front_matter.get("name")
            if not isinstance(name, str) or not name.strip():
                name = path.parent.name
            skills.append(DetectedSkill(name=name.strip(), path=path))

    if errors:
        raise SkillScanError("; ".join(errors))

    return skills


__all__ = ["DetectedSkill", "SKILL_DIRS", "SkillScanError", "detect_skills", "read_front_matter"]
