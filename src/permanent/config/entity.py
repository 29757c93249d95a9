"""Entity behaviour switches."""

from __future__ import annotations

from dataclasses import dataclass

from .env import env_flag


@dataclass(frozen=True, slots=True)
class EntityConfig:
    """Holds the process-wide entity checking switches."""

    check_field_integrity: bool = True
    dev_mode: bool = False

    @classmethod
    def from_environment(cls) -> EntityConfig:
        return cls(
            check_field_integrity=env_flag("PERMANENT_CHECK_FIELD_INTEGRITY", default=True),
            dev_mode=env_flag("PERMANENT_DEV_MODE", default=False),
        )


def get_entity_config() -> EntityConfig:
    return EntityConfig.from_environment()
