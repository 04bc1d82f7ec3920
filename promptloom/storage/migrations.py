"""Schema versions, per-version indexes and record migrations.

Each migration upgrades one collection to the schema version it names.  An
upgrade function takes a raw record dict and returns the upgraded dict; it
must be idempotent because a crash between rewriting a collection and bumping
the stored version makes the next open run the same step again.
"""

from dataclasses import dataclass
from typing import Callable

from .models import utcnow

SCHEMA_VERSION = 2
MIN_SUPPORTED_VERSION = 1

INDEXES: dict[int, dict[str, tuple[str, ...]]] = {
    1: {
        "provider_configs": ("name",),
        "roles": ("name",),
        "tags": ("name", "is_general", "role_id"),
        "dialogs": ("last_updated_at", "name"),
        "prompt_presets": ("name", "role_id"),
    },
    2: {
        "provider_configs": ("name",),
        "roles": ("name",),
        "tags": ("name", "is_general", "role_id"),
        "dialogs": ("last_updated_at", "name"),
        "prompt_presets": ("name", "role_id", "last_used_at"),
    },
}


@dataclass(frozen=True)
class Migration:
    version: int  # Schema version produced by this step
    collection: str
    upgrade: Callable[[dict], dict]
    description: str = ""


def backfill_last_used_at(record: dict) -> dict:
    """Give presets saved before v2 a last_used_at, defaulting to created_at."""
    if record.get("last_used_at"):
        return record
    upgraded = dict(record)
    upgraded["last_used_at"] = record.get("created_at") or utcnow().isoformat()
    return upgraded


MIGRATIONS: list[Migration] = [
    Migration(
        version=2,
        collection="prompt_presets",
        upgrade=backfill_last_used_at,
        description="add last_used_at index",
    ),
]


def indexes_for(collection: str, version: int = SCHEMA_VERSION) -> tuple[str, ...]:
    return ("id",) + INDEXES.get(version, {}).get(collection, ())


def steps_for(version: int, migrations: list[Migration]) -> list[Migration]:
    return [m for m in migrations if m.version == version]
