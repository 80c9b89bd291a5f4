from __future__ import annotations

from dataclasses import asdict, dataclass, fields, replace
from typing import Any, Mapping

EXPORT_TARGETS = ("jsonl", "backend-refresh")


@dataclass(frozen=True)
class MomentumSettings:
    due_date_field: str = "end"
    timezone: str = "Australia/Sydney"
    export_path: str = ".momentum/time-entries.jsonl"
    export_target: str = "jsonl"
    export_backend_url: str = ""
    daily_note_folder: str = ""
    auto_insert_on_create: bool = True

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


DEFAULT_SETTINGS = MomentumSettings()

_STRING_FIELDS = ("due_date_field", "timezone", "export_path", "export_backend_url", "daily_note_folder")


def sanitize_settings(raw: Any) -> dict[str, Any]:
    """Keep only known keys whose values have the right type.

    Anything else in ``raw`` is dropped silently; callers merge the result
    over the defaults.
    """
    if not isinstance(raw, Mapping):
        return {}

    clean: dict[str, Any] = {}
    for key in _STRING_FIELDS:
        if isinstance(raw.get(key), str):
            clean[key] = raw[key]
    if raw.get("export_target") in EXPORT_TARGETS:
        clean["export_target"] = raw["export_target"]
    if isinstance(raw.get("auto_insert_on_create"), bool):
        clean["auto_insert_on_create"] = raw["auto_insert_on_create"]
    return clean


def merge_settings(base: MomentumSettings, overrides: Mapping[str, Any]) -> MomentumSettings:
    known = {item.name for item in fields(MomentumSettings)}
    return replace(base, **{key: value for key, value in sanitize_settings(overrides).items() if key in known})
