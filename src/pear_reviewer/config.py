"""Audit configuration: path categories, trailer keys, aliases, external approvals.

The engine never reads ambient state; callers build an ``AuditConfig`` and
pass it in explicitly.
"""

from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field, replace
from pathlib import Path
from types import MappingProxyType
from typing import Any

import yaml  # type: ignore[import-untyped]

from pear_reviewer.audit.identity import normalize_aliases
from pear_reviewer.audit.types import ExternalApproval

DEFAULT_CONFIG_FILENAME = ".pear-reviewer.yaml"

DEFAULT_APPROVAL_TRAILERS: tuple[str, ...] = ("Approved-by", "Reviewed-by")
DEFAULT_AUTHOR_TRAILERS: tuple[str, ...] = ("Co-authored-by",)

DEFAULT_CATEGORIES: dict[str, tuple[str, ...]] = {
    "helm-chart": ("charts/**", "**/values.yaml", "**/images.yaml"),
    "repo": ("**",),
}

CONFIG_REASON_PARSE_ERROR = "CONFIG_PARSE_ERROR"
CONFIG_REASON_SCHEMA_INVALID = "CONFIG_SCHEMA_INVALID"
CONFIG_REASON_CATEGORY_UNKNOWN = "CATEGORY_UNKNOWN"


class ConfigError(ValueError):
    """Configuration validation error."""

    reason_code: str

    def __init__(self, message: str, reason_code: str = CONFIG_REASON_SCHEMA_INVALID) -> None:
        super().__init__(message)
        self.reason_code = reason_code


@dataclass(frozen=True)
class AuditConfig:
    """Immutable configuration value handed to the engine entry point."""

    patterns: tuple[str, ...]
    approval_trailers: tuple[str, ...] = DEFAULT_APPROVAL_TRAILERS
    author_trailers: tuple[str, ...] = DEFAULT_AUTHOR_TRAILERS
    aliases: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    external_approvals: tuple[ExternalApproval, ...] = ()
    change_id: str | None = None
    max_workers: int | None = None

    def with_approvals(self, approvals: Sequence[ExternalApproval]) -> AuditConfig:
        return replace(self, external_approvals=self.external_approvals + tuple(approvals))


@dataclass(frozen=True)
class ConfigFile:
    """Parsed configuration file before a category is selected."""

    categories: dict[str, tuple[str, ...]]
    approval_trailers: tuple[str, ...]
    author_trailers: tuple[str, ...]
    aliases: dict[str, str]
    max_workers: int | None
    path: Path | None = None

    def audit_config(self, category: str, *, change_id: str | None = None) -> AuditConfig:
        """Select one category's patterns and build the engine configuration."""
        if category not in self.categories:
            known = ", ".join(sorted(self.categories)) or "(none)"
            raise ConfigError(
                f"unknown category `{category}`; configured categories: {known}",
                CONFIG_REASON_CATEGORY_UNKNOWN,
            )
        return AuditConfig(
            patterns=self.categories[category],
            approval_trailers=self.approval_trailers,
            author_trailers=self.author_trailers,
            aliases=MappingProxyType(dict(self.aliases)),
            change_id=change_id,
            max_workers=self.max_workers,
        )


def default_config() -> ConfigFile:
    return ConfigFile(
        categories=dict(DEFAULT_CATEGORIES),
        approval_trailers=DEFAULT_APPROVAL_TRAILERS,
        author_trailers=DEFAULT_AUTHOR_TRAILERS,
        aliases={},
        max_workers=None,
    )


def load_config(repo_root: Path, config_path: Path | None = None) -> ConfigFile:
    """Load configuration from ``config_path`` or ``<repo_root>/.pear-reviewer.yaml``.

    Falls back to built-in defaults when no explicit path is given and the
    repository has no configuration file.
    """
    path = config_path if config_path is not None else repo_root / DEFAULT_CONFIG_FILENAME
    if not path.exists():
        if config_path is not None:
            raise ConfigError(f"config file not found: {path}", CONFIG_REASON_PARSE_ERROR)
        return default_config()

    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ConfigError(f"{path.name} parse error: {exc}", CONFIG_REASON_PARSE_ERROR) from exc
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigError(f"{path.name} parse error: expected mapping at top level", CONFIG_REASON_PARSE_ERROR)
    return parse_config(raw, path=path)


def parse_config(raw: dict[str, Any], *, path: Path | None = None) -> ConfigFile:
    """Validate and normalize a configuration mapping."""
    defaults = default_config()

    categories = dict(defaults.categories)
    categories_raw = raw.get("categories")
    if categories_raw is not None:
        if not isinstance(categories_raw, dict):
            raise ConfigError("`categories` must be a mapping of name to pattern list")
        for name, patterns in categories_raw.items():
            categories[str(name)] = _string_tuple(patterns, f"categories.{name}", allow_empty=False)

    approval_trailers = defaults.approval_trailers
    if "approval_trailers" in raw:
        approval_trailers = _string_tuple(raw["approval_trailers"], "approval_trailers", allow_empty=False)

    author_trailers = defaults.author_trailers
    if "author_trailers" in raw:
        author_trailers = _string_tuple(raw["author_trailers"], "author_trailers", allow_empty=True)

    aliases_raw = raw.get("aliases") or {}
    if not isinstance(aliases_raw, dict):
        raise ConfigError("`aliases` must be a mapping of handle to canonical handle")
    aliases = normalize_aliases({str(k): str(v) for k, v in aliases_raw.items()})

    max_workers = raw.get("max_workers")
    if max_workers is not None and (
        not isinstance(max_workers, int) or isinstance(max_workers, bool) or max_workers < 1
    ):
        raise ConfigError("`max_workers` must be a positive integer")

    return ConfigFile(
        categories=categories,
        approval_trailers=approval_trailers,
        author_trailers=author_trailers,
        aliases=aliases,
        max_workers=max_workers,
        path=path,
    )


def load_external_approvals(path: Path) -> tuple[ExternalApproval, ...]:
    """Load externally supplied approvals from a YAML or JSON file.

    Accepts either a list of approval objects or a mapping with an
    ``approvals`` list. Each object needs ``reviewer`` and may carry
    ``commit``, ``change`` and ``state`` (default ``approved``).
    """
    if not path.exists():
        raise ConfigError(f"approvals file not found: {path}", CONFIG_REASON_PARSE_ERROR)

    text = path.read_text(encoding="utf-8")
    try:
        if path.suffix.lower() == ".json":
            raw = json.loads(text)
        else:
            raw = yaml.safe_load(text)
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise ConfigError(f"{path.name} parse error: {exc}", CONFIG_REASON_PARSE_ERROR) from exc

    if isinstance(raw, dict):
        raw = raw.get("approvals", [])
    if raw is None:
        return ()
    if not isinstance(raw, list):
        raise ConfigError(f"{path.name}: expected a list of approvals")

    approvals: list[ExternalApproval] = []
    for index, item in enumerate(raw):
        if not isinstance(item, dict):
            raise ConfigError(f"{path.name}: approval #{index} must be a mapping")
        reviewer = item.get("reviewer")
        if not isinstance(reviewer, str) or not reviewer.strip():
            raise ConfigError(f"{path.name}: approval #{index} is missing `reviewer`")
        commit = item.get("commit")
        change = item.get("change")
        approvals.append(
            ExternalApproval(
                reviewer=reviewer.strip(),
                commit=str(commit).strip() if commit is not None else None,
                change=str(change).strip() if change is not None else None,
                state=str(item.get("state", "approved")),
            )
        )
    return tuple(approvals)


def _string_tuple(value: Any, key: str, *, allow_empty: bool) -> tuple[str, ...]:
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ConfigError(f"`{key}` must be a list of strings")
    items = tuple(item.strip() for item in value if item.strip())
    if not items and not allow_empty:
        raise ConfigError(f"`{key}` must not be empty")
    return items
