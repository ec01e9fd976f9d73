"""Skill document discovery, stats injection and wrapping preferences."""

from .detector import DetectedSkill, SkillScanError, detect_skills
from .injector import STATS_END_MARKER, STATS_START_MARKER, build_stats_block, inject_skill_stats
from .preferences import CONFIG_FILENAME, InitConfig, read_init_config, write_init_config

__all__ = [
    "CONFIG_FILENAME",
    "DetectedSkill",
    "InitConfig",
    "STATS_END_MARKER",
    "STATS_START_MARKER",
    "SkillScanError",
    "build_stats_block",
    "detect_skills",
    "inject_skill_stats",
    "read_init_config",
    "write_init_config",
]
