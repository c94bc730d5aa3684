"""Reconcile a component's npm packages and styles against a target project.

Reading the target project's ``package.json`` and tailwind config is
best-effort: a missing or unreadable file means there is nothing to compare
against, never an error.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from nodesemver import compare, make_range, valid_range

from template_pipeline.path_utils import content_hash
from template_pipeline.prompt_models import NpmPackage


logger = logging.getLogger(__name__)

# (version, inclusive) or None for an unbounded side.
_Bound = Optional[Tuple[str, bool]]


@dataclass(frozen=True)
class StylePatchEntry:
    path: str
    content: str


@dataclass
class PackagePatchResult:
    add_dependencies: List[NpmPackage] = field(default_factory=list)
    existing_conflicts: List[NpmPackage] = field(default_factory=list)
    style_patch: List[StylePatchEntry] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


def read_existing_dependencies(package_json_path: Optional[str] = None) -> Dict[str, str]:
    """Return merged ``dependencies`` + ``devDependencies`` of a package.json."""

    resolved = Path(package_json_path) if package_json_path else Path.cwd() / "package.json"
    try:
        payload = json.loads(resolved.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        logger.debug("Skipping unreadable package manifest %s: %s", resolved, exc)
        return {}

    if not isinstance(payload, dict):
        return {}

    merged: Dict[str, str] = {}
    for section in ("dependencies", "devDependencies"):
        deps = payload.get(section)
        if isinstance(deps, dict):
            merged.update({str(name): str(version) for name, version in deps.items()})
    return merged


def _read_text(path: Optional[str]) -> Optional[str]:
    if not path:
        return None
    try:
        return Path(path).resolve().read_text(encoding="utf-8")
    except OSError as exc:
        logger.debug("Skipping unreadable tailwind config %s: %s", path, exc)
        return None


def _tighter(current: _Bound, candidate: Tuple[str, bool], *, lower: bool) -> Tuple[str, bool]:
    if current is None:
        return candidate
    order = compare(candidate[0], current[0], False)
    if order == 0:
        return (current[0], current[1] and candidate[1])
    if lower:
        return candidate if order > 0 else current
    return candidate if order < 0 else current


def _interval(comparators: Iterable) -> Tuple[_Bound, _Bound]:
    low: _Bound = None
    high: _Bound = None
    for comparator in comparators:
        version = getattr(comparator.semver, "version", None)
        if not version:
            continue
        operator = comparator.operator or "="
        if operator in {">", ">="}:
            low = _tighter(low, (version, operator == ">="), lower=True)
        elif operator in {"<", "<="}:
            high = _tighter(high, (version, operator == "<="), lower=False)
        else:
            low = _tighter(low, (version, True), lower=True)
            high = _tighter(high, (version, True), lower=False)
    return low, high


def _bound_within(inner: _Bound, outer: _Bound, *, lower: bool) -> bool:
    if outer is None:
        return True
    if inner is None:
        return False
    order = compare(inner[0], outer[0], False)
    if order == 0:
        return outer[1] or not inner[1]
    return order > 0 if lower else order < 0


def is_range_subset(required: str, existing: str) -> bool:
    """True when every version matching ``required`` also matches ``existing``."""

    outer_sets = [_interval(comparators) for comparators in make_range(existing, False).set]
    for comparators in make_range(required, False).set:
        low, high = _interval(comparators)
        if not any(
            _bound_within(low, outer_low, lower=True) and _bound_within(high, outer_high, lower=False)
            for outer_low, outer_high in outer_sets
        ):
            return False
    return True


def is_range_satisfied(existing_range: str, required_range: str) -> bool:
    try:
        if valid_range(existing_range, False) and valid_range(required_range, False):
            return is_range_subset(required_range, existing_range)
    except ValueError as exc:
        logger.debug("Falling back to string comparison for %s vs %s: %s", required_range, existing_range, exc)
    return existing_range == required_range


def dedupe_styles(styles: Iterable[StylePatchEntry], tailwind_config_path: Optional[str] = None) -> List[StylePatchEntry]:
    existing = _read_text(tailwind_config_path)
    seen = set()
    patch: List[StylePatchEntry] = []

    for style in styles:
        trimmed = (style.content or "").strip()
        if not trimmed:
            continue
        key = (style.path, content_hash(style.content))
        if key in seen:
            continue
        seen.add(key)
        if existing is not None and trimmed in existing:
            continue
        patch.append(style)

    return patch


def create_package_patch(
    incoming_dependencies: Iterable[NpmPackage],
    incoming_styles: Iterable[StylePatchEntry] = (),
    existing_package_json_path: Optional[str] = None,
    existing_tailwind_config_path: Optional[str] = None,
) -> PackagePatchResult:
    existing = read_existing_dependencies(existing_package_json_path)
    result = PackagePatchResult()

    for dep in incoming_dependencies:
        if not dep or not dep.name:
            continue
        current = existing.get(dep.name)
        if current is None:
            result.add_dependencies.append(dep)
            continue

        if not dep.version or not current:
            result.warnings.append(f"Dependency {dep.name} version comparison skipped")
            continue

        if is_range_satisfied(current, dep.version):
            result.warnings.append(f"Dependency {dep.name}@{dep.version} already satisfied by {current}")
        else:
            result.existing_conflicts.append(NpmPackage(name=dep.name, version=current))

    result.style_patch = dedupe_styles(incoming_styles, existing_tailwind_config_path)
    return result
