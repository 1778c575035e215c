"""Load and validate the change gate configuration document."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from importlib.resources import files
from pathlib import Path
from typing import Any

import yaml  # type: ignore[import-untyped]
from jsonschema.validators import Draft202012Validator

from changegate.errors import CONFIG_PARSE_ERROR, CONFIG_SCHEMA_INVALID, ConfigInvalid
from changegate.types import Action, Mode, PathRule, Severity

DEFAULT_CONFIG_RELATIVE_PATH = Path(".github/codereview-config.yml")
DEFAULT_CACHE_RELATIVE_PATH = ".changegate/cache.json"

# Keep this literal deterministic and sorted in write path.
CONFIG_TEMPLATE: dict[str, Any] = {
    "mode": "hybrid",
    "severity": {"overrides": {}},
    "critical_paths": [
        {
            "pattern": "**/auth/**",
            "label": "Authentication",
            "analyses": ["security"],
            "block_without_review": True,
        },
        {
            "pattern": "**/payment/**",
            "label": "Payments",
            "analyses": ["security"],
            "block_without_review": True,
        },
    ],
    "scopes": [],
    "exemptions": {"skip_paths": ["docs/**"], "skip_agents": [], "skip_rules": []},
    "analyses": {"default": [], "registry": {}},
    "cache": {"enabled": True, "path": DEFAULT_CACHE_RELATIVE_PATH, "max_age_days": 30},
    "limits": {"max_file_lines": 500, "timeout_seconds": 120, "max_workers": None},
    "notifications": {"interval_seconds": 3600},
    "hooks": {"pre_push": {"enabled": True, "allow_override": True}},
}


@dataclass(frozen=True)
class ScopeOverride:
    """Path-scoped (team/role) policy override."""

    name: str
    paths: tuple[str, ...]
    mode: Mode | None = None
    severity_overrides: dict[Severity, Action] = field(default_factory=dict)


@dataclass(frozen=True)
class Exemptions:
    """Paths, analyses and rules removed from blocking consideration."""

    skip_paths: tuple[str, ...] = ()
    skip_agents: tuple[str, ...] = ()
    skip_rules: tuple[str, ...] = ()


@dataclass(frozen=True)
class EnforcementPolicy:
    """Read-only policy for one invocation."""

    mode: Mode = Mode.HYBRID
    severity_overrides: dict[Severity, Action] = field(default_factory=dict)
    rules: tuple[PathRule, ...] = ()
    scopes: tuple[ScopeOverride, ...] = ()
    exemptions: Exemptions = field(default_factory=Exemptions)
    default_analyses: tuple[str, ...] = ()


@dataclass(frozen=True)
class AnalysisSpec:
    """How to reach one external analysis."""

    name: str
    command: tuple[str, ...] = ()
    callable: str | None = None
    timeout_seconds: float | None = None


@dataclass(frozen=True)
class CacheSettings:
    enabled: bool = True
    path: str = DEFAULT_CACHE_RELATIVE_PATH
    max_age_days: float = 30.0


@dataclass(frozen=True)
class Limits:
    max_file_lines: int = 500
    timeout_seconds: float = 120.0
    max_workers: int | None = None


@dataclass(frozen=True)
class HookSettings:
    pre_push_enabled: bool = True
    allow_override: bool = True


@dataclass(frozen=True)
class GateConfig:
    """Normalized configuration document."""

    policy: EnforcementPolicy = field(default_factory=EnforcementPolicy)
    analyses: dict[str, AnalysisSpec] = field(default_factory=dict)
    cache: CacheSettings = field(default_factory=CacheSettings)
    limits: Limits = field(default_factory=Limits)
    notification_interval_seconds: float = 3600.0
    hooks: HookSettings = field(default_factory=HookSettings)
    path: Path | None = None


# Without a configuration file nothing blocks: hybrid stance, CRITICAL only warns.
DEFAULT_POLICY = EnforcementPolicy(
    mode=Mode.HYBRID,
    severity_overrides={Severity.CRITICAL: Action.WARN},
)


def default_config() -> GateConfig:
    return GateConfig(policy=DEFAULT_POLICY)


def config_path_for_repo(repo_root: Path) -> Path:
    return repo_root.resolve() / DEFAULT_CONFIG_RELATIVE_PATH


def ensure_default_config(repo_root: Path, *, force: bool = False) -> Path:
    """Write the default configuration template deterministically."""
    output_path = config_path_for_repo(repo_root)
    if output_path.exists() and not force:
        raise FileExistsError(f"Configuration file already exists: {output_path}")

    output_path.parent.mkdir(parents=True, exist_ok=True)
    rendered = yaml.safe_dump(CONFIG_TEMPLATE, sort_keys=True)
    output_path.write_text(rendered, encoding="utf-8")
    return output_path


def load_config(repo_root: Path, config_path: Path | None = None) -> GateConfig:
    """Load, validate and normalize the configuration document.

    A missing default file yields :func:`default_config`; an explicitly
    requested file that does not exist is an error.

    Raises:
        ConfigInvalid: If the document cannot be parsed or fails validation
    """
    path = config_path if config_path is not None else config_path_for_repo(repo_root)
    if not path.exists():
        if config_path is not None:
            raise ConfigInvalid(f"Configuration file not found: {path}", CONFIG_PARSE_ERROR)
        return default_config()

    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ConfigInvalid(f"{path.name} parse error: {exc}", CONFIG_PARSE_ERROR) from exc
    except OSError as exc:
        raise ConfigInvalid(f"Cannot read {path}: {exc}", CONFIG_PARSE_ERROR) from exc

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigInvalid(f"{path.name} parse error: expected mapping at top level", CONFIG_PARSE_ERROR)

    validate_config_document(raw)
    return parse_config(raw, path=path)


def _load_schema() -> dict[str, Any]:
    resource = files("changegate").joinpath("schemas", "config.schema.json")
    return json.loads(resource.read_text(encoding="utf-8"))


def validate_config_document(raw: dict[str, Any]) -> None:
    """Structural validation against the packaged JSON schema."""
    validator = Draft202012Validator(_load_schema())
    errors = sorted(validator.iter_errors(raw), key=lambda e: [str(p) for p in e.path])
    if errors:
        messages = [
            f"{'.'.join(str(p) for p in e.path)}: {e.message}" if e.path else e.message
            for e in errors
        ]
        raise ConfigInvalid(
            "Configuration failed validation:\n" + "\n".join(f"  - {msg}" for msg in messages),
            CONFIG_SCHEMA_INVALID,
        )


def parse_config(raw: dict[str, Any], *, path: Path | None = None) -> GateConfig:
    """Normalize a validated document into frozen dataclasses."""
    mode = _parse_mode(raw.get("mode", Mode.HYBRID.value), "mode")
    severity_raw = raw.get("severity") or {}
    overrides = _parse_severity_map(severity_raw.get("overrides"), "severity.overrides")

    rules: list[PathRule] = []
    for index, entry in enumerate(raw.get("critical_paths") or []):
        pattern = str(entry["pattern"]).strip()
        if not pattern:
            raise ConfigInvalid(f"critical_paths[{index}].pattern must be non-empty")
        rules.append(
            PathRule(
                pattern=pattern,
                label=str(entry.get("label") or pattern),
                analyses=tuple(_normalize_string_list_preserve_order(entry.get("analyses"), f"critical_paths[{index}].analyses")),
                block_without_review=bool(entry.get("block_without_review", False)),
            )
        )

    scopes: list[ScopeOverride] = []
    for index, entry in enumerate(raw.get("scopes") or []):
        scope_mode = entry.get("mode")
        scopes.append(
            ScopeOverride(
                name=str(entry["name"]),
                paths=tuple(_normalize_string_list_preserve_order(entry.get("paths"), f"scopes[{index}].paths")),
                mode=_parse_mode(scope_mode, f"scopes[{index}].mode") if scope_mode is not None else None,
                severity_overrides=_parse_severity_map(entry.get("severity_overrides"), f"scopes[{index}].severity_overrides"),
            )
        )

    exemptions_raw = raw.get("exemptions") or {}
    exemptions = Exemptions(
        skip_paths=tuple(_normalize_string_list_preserve_order(exemptions_raw.get("skip_paths"), "exemptions.skip_paths")),
        skip_agents=tuple(_normalize_string_list_preserve_order(exemptions_raw.get("skip_agents"), "exemptions.skip_agents")),
        skip_rules=tuple(_normalize_string_list_preserve_order(exemptions_raw.get("skip_rules"), "exemptions.skip_rules")),
    )

    analyses_raw = raw.get("analyses") or {}
    default_analyses = tuple(_normalize_string_list_preserve_order(analyses_raw.get("default"), "analyses.default"))
    specs: dict[str, AnalysisSpec] = {}
    registry_raw = analyses_raw.get("registry") or {}
    for name in sorted(registry_raw):
        entry = registry_raw[name] or {}
        timeout = entry.get("timeout_seconds")
        specs[name] = AnalysisSpec(
            name=name,
            command=tuple(str(item) for item in entry.get("command") or ()),
            callable=entry.get("callable"),
            timeout_seconds=float(timeout) if timeout is not None else None,
        )

    cache_raw = raw.get("cache") or {}
    cache = CacheSettings(
        enabled=bool(cache_raw.get("enabled", True)),
        path=str(cache_raw.get("path", DEFAULT_CACHE_RELATIVE_PATH)),
        max_age_days=float(cache_raw.get("max_age_days", 30)),
    )

    limits_raw = raw.get("limits") or {}
    max_workers = limits_raw.get("max_workers")
    limits = Limits(
        max_file_lines=int(limits_raw.get("max_file_lines", 500)),
        timeout_seconds=float(limits_raw.get("timeout_seconds", 120)),
        max_workers=int(max_workers) if max_workers is not None else None,
    )

    notifications_raw = raw.get("notifications") or {}
    pre_push_raw = (raw.get("hooks") or {}).get("pre_push") or {}

    return GateConfig(
        policy=EnforcementPolicy(
            mode=mode,
            severity_overrides=overrides,
            rules=tuple(rules),
            scopes=tuple(scopes),
            exemptions=exemptions,
            default_analyses=default_analyses,
        ),
        analyses=specs,
        cache=cache,
        limits=limits,
        notification_interval_seconds=float(notifications_raw.get("interval_seconds", 3600)),
        hooks=HookSettings(
            pre_push_enabled=bool(pre_push_raw.get("enabled", True)),
            allow_override=bool(pre_push_raw.get("allow_override", True)),
        ),
        path=path,
    )


def _parse_mode(value: Any, field_name: str) -> Mode:
    try:
        return Mode(str(value).strip().lower())
    except ValueError as exc:
        raise ConfigInvalid(f"{field_name} must be one of {[m.value for m in Mode]}, got `{value}`") from exc


def _parse_severity_map(value: Any, field_name: str) -> dict[Severity, Action]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigInvalid(f"{field_name} must be a mapping of severity to action")
    parsed: dict[Severity, Action] = {}
    for key, action in value.items():
        try:
            parsed[Severity(str(key).strip().upper())] = Action(str(action).strip().lower())
        except ValueError as exc:
            raise ConfigInvalid(f"{field_name}: invalid entry `{key}: {action}`") from exc
    return parsed


def _normalize_string_list_preserve_order(value: Any, field_name: str) -> list[str]:
    """Normalize list of strings while preserving declaration order."""
    if value is None:
        return []
    if not isinstance(value, list):
        raise ConfigInvalid(f"{field_name} must be a list of strings")

    normalized: list[str] = []
    seen: set[str] = set()
    for item in value:
        if not isinstance(item, str):
            raise ConfigInvalid(f"{field_name} must be a list of strings")
        cleaned = item.strip()
        if cleaned and cleaned not in seen:
            seen.add(cleaned)
            normalized.append(cleaned)

    return normalized
