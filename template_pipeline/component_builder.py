"""Materialize a parsed prompt into a working directory of source files."""

from __future__ import annotations

import base64
import binascii
import logging
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Literal, Optional, Sequence, Union

from template_pipeline.path_utils import (
    UnsafePathError,
    content_hash,
    posix_join,
    resolve_inside,
    sanitize_filename,
    to_kebab_case,
)
from template_pipeline.prompt_models import NpmPackage, ParsedPrompt, PromptAsset, PromptFile


logger = logging.getLogger(__name__)

COMPONENT_DIR = "components/ui"
DEMO_DIR = "components/ui/__demos__"
DEPENDENCY_DIR = "components/deps"
STYLE_DIR = "styles"
ASSET_DIR = "public"

ArtifactKind = Literal["component", "demo", "dependency", "style", "asset"]


class ComponentBuildError(RuntimeError):
    """Raised when the working tree for a component cannot be produced."""


@dataclass
class ComponentFileArtifact:
    path: str
    size: int
    kind: ArtifactKind


@dataclass
class ComponentBuildResult:
    out_dir: str
    slug: str
    component_file: str
    demo_file: Optional[str] = None
    dependency_files: List[str] = field(default_factory=list)
    style_files: List[str] = field(default_factory=list)
    asset_files: List[str] = field(default_factory=list)
    npm_packages: List[NpmPackage] = field(default_factory=list)
    style_entries: List[PromptFile] = field(default_factory=list)
    manifest: List[ComponentFileArtifact] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


class _WorkingTree:
    """Writes files under one output root and keeps the manifest in write order."""

    def __init__(self, root: Path) -> None:
        self.root = root
        self.manifest: List[ComponentFileArtifact] = []

    def write(self, relative: str, data: Union[str, bytes], kind: ArtifactKind) -> str:
        try:
            target = resolve_inside(self.root, relative)
        except UnsafePathError as exc:
            raise ComponentBuildError(str(exc)) from exc

        target.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(data, bytes):
            target.write_bytes(data)
        else:
            target.write_text(data, encoding="utf-8")

        self.manifest.append(ComponentFileArtifact(path=relative, size=target.stat().st_size, kind=kind))
        return relative


def _safe_name(filename: str) -> str:
    try:
        return sanitize_filename(filename)
    except UnsafePathError as exc:
        raise ComponentBuildError(str(exc)) from exc


def _persist_files(
    tree: _WorkingTree,
    base_dir: str,
    files: Sequence[PromptFile],
    kind: ArtifactKind,
) -> List[str]:
    written: List[str] = []
    for entry in files:
        if not entry.content:
            continue
        filename = _safe_name(entry.filename) if entry.filename else f"{content_hash(entry.content)}.ts"
        written.append(tree.write(posix_join(base_dir, filename), entry.content, kind))
    return written


def _decode_asset(asset: PromptAsset) -> Union[str, bytes]:
    if asset.encoding != "base64":
        return asset.content
    try:
        return base64.b64decode("".join(asset.content.split()), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ComponentBuildError(f"Asset '{asset.filename}' is not valid base64: {exc}") from exc


def _persist_assets(tree: _WorkingTree, assets: Sequence[PromptAsset]) -> List[str]:
    written: List[str] = []
    for asset in assets:
        if not asset.content or not asset.filename:
            continue
        relative = posix_join(ASSET_DIR, _safe_name(asset.filename))
        written.append(tree.write(relative, _decode_asset(asset), "asset"))
    return written


def build_component(prompt: ParsedPrompt, out_dir: Optional[str] = None) -> ComponentBuildResult:
    """Write component, demo, dependency, style and asset files for ``prompt``.

    When ``out_dir`` is omitted an isolated temporary directory is created; the
    caller owns it afterwards.
    """

    if prompt is None or prompt.component is None or not prompt.component.code:
        raise ComponentBuildError("Parsed prompt missing component code")

    root = Path(out_dir) if out_dir else Path(tempfile.mkdtemp(prefix="prompt-component-"))
    root.mkdir(parents=True, exist_ok=True)
    slug = prompt.slug or to_kebab_case(prompt.name or "component")
    tree = _WorkingTree(root)
    warnings: List[str] = []

    component_name = _safe_name(prompt.component.filename) if prompt.component.filename else f"{slug}.tsx"
    component_file = tree.write(posix_join(COMPONENT_DIR, component_name), prompt.component.code, "component")

    demo_file: Optional[str] = None
    if prompt.demo is not None and prompt.demo.code:
        demo_name = _safe_name(prompt.demo.filename) if prompt.demo.filename else f"{slug}.demo.tsx"
        demo_file = tree.write(posix_join(DEMO_DIR, demo_name), prompt.demo.code, "demo")
    else:
        warnings.append("Demo section missing in parsed prompt")

    dependency_files = _persist_files(tree, DEPENDENCY_DIR, prompt.dependencies, "dependency")
    style_files = _persist_files(tree, STYLE_DIR, prompt.styles, "style")
    asset_files = _persist_assets(tree, prompt.assets)

    logger.info("Built component '%s' into %s (%d files)", slug, root, len(tree.manifest))

    return ComponentBuildResult(
        out_dir=str(root),
        slug=slug,
        component_file=component_file,
        demo_file=demo_file,
        dependency_files=dependency_files,
        style_files=style_files,
        asset_files=asset_files,
        npm_packages=list(prompt.npm_packages),
        style_entries=list(prompt.styles),
        manifest=tree.manifest,
        warnings=warnings,
    )
