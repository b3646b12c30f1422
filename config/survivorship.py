"""
Survivorship precedence configuration for artwork merges.

When an import record is merged into an existing artwork, each scalar field is
resolved by walking the field's tier order and taking the first usable value.
The default profile lists ``existing_core`` ahead of ``incoming`` with
``prefer_non_null`` enabled, so stored data is only ever filled in, never
replaced.

Operators can override the defaults by pointing
``IMPORTER_SURVIVORSHIP_PROFILE_PATH`` at a JSON or YAML file.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Mapping, MutableMapping, Sequence

import yaml


SourceTier = str
"""Identifier for a precedence tier (``existing_core`` or ``incoming``)."""

KNOWN_TIERS: frozenset[str] = frozenset({"existing_core", "incoming"})


@dataclass(frozen=True)
class FieldRule:
    """
    Survivorship precedence details for a single artwork field.

    Attributes:
        field_name: Attribute on the Artwork model.
        tier_order: Ordered source tiers; earlier entries win.
        prefer_non_null: When true, blank values lose to non-blank values
            even if they originate from a higher tier.
    """

    field_name: str
    tier_order: Sequence[SourceTier]
    prefer_non_null: bool = True


@dataclass(frozen=True)
class FieldGroup:
    name: str
    display_name: str
    fields: Sequence[FieldRule]


@dataclass(frozen=True)
class SurvivorshipProfile:
    """Container for all precedence rules."""

    key: str
    label: str
    description: str
    field_groups: Sequence[FieldGroup]
    default_tier_order: Sequence[SourceTier]

    def find_rule(self, field_name: str) -> FieldRule | None:
        for group in self.field_groups:
            for rule in group.fields:
                if rule.field_name == field_name:
                    return rule
        return None

    @property
    def field_names(self) -> tuple[str, ...]:
        return tuple(rule.field_name for group in self.field_groups for rule in group.fields)


# ---------------------------------------------------------------------------
# Default profile
# ---------------------------------------------------------------------------

DEFAULT_TIER_ORDER: tuple[SourceTier, ...] = (
    "existing_core",
    "incoming",
)

DESCRIPTIVE_FIELDS: tuple[FieldRule, ...] = (
    FieldRule("title", DEFAULT_TIER_ORDER),
    FieldRule("description", DEFAULT_TIER_ORDER),
)

PROVENANCE_FIELDS: tuple[FieldRule, ...] = (FieldRule("source_url", DEFAULT_TIER_ORDER),)

DEFAULT_PROFILE = SurvivorshipProfile(
    key="default",
    label="Earliest data wins",
    description="Stored artwork values are kept; incoming values only fill fields that are empty.",
    field_groups=(
        FieldGroup("descriptive", "Descriptive", DESCRIPTIVE_FIELDS),
        FieldGroup("provenance", "Provenance", PROVENANCE_FIELDS),
    ),
    default_tier_order=DEFAULT_TIER_ORDER,
)


# ---------------------------------------------------------------------------
# Loading helpers
# ---------------------------------------------------------------------------


class SurvivorshipConfigError(RuntimeError):
    """Raised when a configuration override cannot be parsed."""


def _load_override(path: Path) -> MutableMapping[str, object]:
    if not path.exists():
        raise SurvivorshipConfigError(f"Survivorship override file {path} does not exist.")
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:  # pragma: no cover - filesystem failure
        raise SurvivorshipConfigError(f"Unable to read survivorship override file {path}: {exc}") from exc

    try:
        if path.suffix.lower() in {".yaml", ".yml"}:
            data = yaml.safe_load(text)
        else:
            data = json.loads(text)
    except (yaml.YAMLError, json.JSONDecodeError) as exc:
        raise SurvivorshipConfigError(f"Survivorship override file {path} is not valid: {exc}") from exc

    if not isinstance(data, Mapping):
        raise SurvivorshipConfigError("Survivorship override must be a JSON/YAML object.")
    return dict(data)


def _coerce_tier_order(value: object | None, *, item_name: str) -> tuple[SourceTier, ...]:
    if value is None:
        return ()
    if not isinstance(value, Sequence) or isinstance(value, (str, bytes)):
        raise SurvivorshipConfigError(f"Expected sequence for {item_name}, got {type(value).__name__}.")
    tiers = tuple(str(item).strip() for item in value)
    unknown = [tier for tier in tiers if tier not in KNOWN_TIERS]
    if unknown:
        raise SurvivorshipConfigError(f"Unknown tier(s) in {item_name}: {', '.join(unknown)}.")
    return tiers


def _coerce_field_rule(raw: Mapping[str, object]) -> FieldRule:
    name = str(raw.get("field_name") or "").strip()
    if not name:
        raise SurvivorshipConfigError("Each field rule requires a non-empty field_name.")
    tier_order = _coerce_tier_order(raw.get("tier_order"), item_name=f"{name}.tier_order") or DEFAULT_TIER_ORDER
    return FieldRule(
        field_name=name,
        tier_order=tier_order,
        prefer_non_null=bool(raw.get("prefer_non_null", True)),
    )


def _coerce_field_group(raw: Mapping[str, object]) -> FieldGroup:
    name = str(raw.get("name") or "").strip()
    if not name:
        raise SurvivorshipConfigError("Each field group requires a non-empty name.")
    display_name = str(raw.get("display_name") or name).strip()
    fields_raw = raw.get("fields") or ()
    if not isinstance(fields_raw, Iterable):
        raise SurvivorshipConfigError(f"Group {name} fields must be a sequence.")
    rules = tuple(_coerce_field_rule(rule) for rule in fields_raw)  # type: ignore[arg-type]
    return FieldGroup(name=name, display_name=display_name or name.title(), fields=rules)


def _coerce_profile(raw: Mapping[str, object]) -> SurvivorshipProfile:
    key = str(raw.get("key") or DEFAULT_PROFILE.key).strip() or DEFAULT_PROFILE.key
    label = str(raw.get("label") or DEFAULT_PROFILE.label).strip() or DEFAULT_PROFILE.label
    description = str(raw.get("description") or DEFAULT_PROFILE.description).strip() or DEFAULT_PROFILE.description
    default_tier_order = (
        _coerce_tier_order(raw.get("default_tier_order"), item_name="default_tier_order") or DEFAULT_TIER_ORDER
    )
    raw_groups = raw.get("field_groups") or ()
    if not isinstance(raw_groups, Iterable):
        raise SurvivorshipConfigError("field_groups must be a sequence.")
    groups = tuple(_coerce_field_group(group) for group in raw_groups)  # type: ignore[arg-type]
    if not groups:
        groups = DEFAULT_PROFILE.field_groups
    return SurvivorshipProfile(
        key=key,
        label=label,
        description=description,
        field_groups=groups,
        default_tier_order=default_tier_order,
    )


def load_profile(env: Mapping[str, str] | None = None) -> SurvivorshipProfile:
    """
    Load the active survivorship profile.

    If ``IMPORTER_SURVIVORSHIP_PROFILE_PATH`` is present in ``env`` its JSON/YAML
    content replaces the default profile.
    """

    env_map = env or {}
    override_path = env_map.get("IMPORTER_SURVIVORSHIP_PROFILE_PATH")
    if not override_path:
        return DEFAULT_PROFILE
    return _coerce_profile(_load_override(Path(override_path)))


__all__ = [
    "DEFAULT_PROFILE",
    "DEFAULT_TIER_ORDER",
    "FieldGroup",
    "FieldRule",
    "SurvivorshipConfigError",
    "SurvivorshipProfile",
    "load_profile",
]
