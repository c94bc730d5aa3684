"""Parse markdown (or JSON) component prompts into :class:`ParsedPrompt`.

Markdown prompts look like::

    # Hero Banner
    Slug: hero-banner
    Description: Landing page hero

    ## Component
    ```tsx filename=HeroBanner.tsx export=HeroBanner
    ...
    ```

    ## Demo / ## Dependencies / ## Styles / ## Assets / ## npm / ## Notes

Headings are matched to section kinds through an alias table (English and
Chinese aliases). Only the component section is mandatory; every other
missing section produces a :class:`ParserWarning`.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError

from template_pipeline.path_utils import slugify
from template_pipeline.prompt_models import (
    NpmPackage,
    ParsedPrompt,
    ParserWarning,
    PromptAsset,
    PromptComponent,
    PromptDemo,
    PromptDependency,
    PromptFile,
    SectionKind,
)


logger = logging.getLogger(__name__)

DEFAULT_PROMPT_NAME = "Untitled Prompt"

# Order matters: on equal scores the first kind listed wins.
SECTION_ALIASES: Dict[SectionKind, List[str]] = {
    "component": ["component", "主组件", "组件", "component source", "main component"],
    "demo": ["demo", "示例", "样例", "demo 代码", "demo code", "演示"],
    "dependencies": ["dependencies", "依赖", "依赖文件", "support files", "supporting files"],
    "styles": ["styles", "style", "css", "样式"],
    "assets": ["assets", "资源", "静态资源", "asset"],
    "npm": ["npm", "packages", "npm packages", "依赖包", "npm 依赖"],
    "notes": ["notes", "实施指南", "指南", "说明", "备注", "notes & guidance"],
}

_MISSING_SECTION_MESSAGES: Dict[str, str] = {
    "demo": "Demo section missing; downstream preview will rely on the component export.",
    "dependencies": "No dependency section provided; assuming component is self-contained.",
    "styles": "No styles section provided; theme defaults will be used.",
    "assets": "No assets section provided; skipping static asset extraction.",
    "npm": "No npm dependency section provided; dependency merge step will be skipped.",
}

_METADATA_KEYS = {
    "slug": "slug",
    "别名": "slug",
    "标识": "slug",
    "description": "description",
    "描述": "description",
    "简介": "description",
    "name": "name",
    "名称": "name",
}

_FENCE_MARKER = "```"
_FENCE_RE = re.compile(r"```([^\n]*)\n(.*?)```", re.DOTALL)
_HEADING_RE = re.compile(r"^#{2,}\s+(.+?)\s*$", re.MULTILINE)
_TITLE_RE = re.compile(r"^#\s+(.+)$", re.MULTILINE)
_METADATA_RE = re.compile(r"^(?P<key>\w+)\s*[:：]\s*(?P<value>.+)$")
_FENCE_ATTR_RE = re.compile(r"""([^\s=]+)=("[^"]*"|'[^']*'|\S*)|(\S+)""")
_LIST_MARKER_RE = re.compile(r"^(?:[-*+]|\d+[.)])\s+")
_NPM_LINE_PREFIX_RE = re.compile(r"^[-*+\d.\s]+")


class PromptParseError(ValueError):
    """Raised when a prompt cannot be turned into a ParsedPrompt."""


@dataclass
class PromptParseResult:
    prompt: ParsedPrompt
    warnings: List[ParserWarning] = field(default_factory=list)


@dataclass
class _Section:
    kind: SectionKind
    title: str
    content: str


@dataclass
class _Fence:
    language: Optional[str]
    attributes: Dict[str, str]
    code: str


def parse_prompt(raw_text: str) -> PromptParseResult:
    if not raw_text or not raw_text.strip():
        raise PromptParseError("Prompt content is empty")

    trimmed = raw_text.strip()
    if trimmed.startswith(("{", "[")):
        return _parse_json_prompt(trimmed)

    if trimmed.count(_FENCE_MARKER) % 2 != 0:
        raise PromptParseError("Detected unterminated code fence in prompt markdown")

    normalized = trimmed.replace("\r\n", "\n")
    front_matter, sections = _split_sections(normalized)
    metadata, metadata_lines = _extract_metadata(front_matter)

    name = metadata.get("name") or _extract_title(front_matter) or DEFAULT_PROMPT_NAME
    slug = slugify(metadata.get("slug") or name) or None
    description = metadata.get("description") or _extract_description(front_matter, metadata_lines)

    by_kind: Dict[str, _Section] = {}
    for section in sections:
        by_kind.setdefault(section.kind, section)

    component_section = by_kind.get("component")
    if component_section is None:
        raise PromptParseError("Prompt missing component section")

    component_fences = _extract_fences(component_section.content)
    if not component_fences:
        raise PromptParseError("Component section missing code fence")
    component = _build_component(component_fences[0], slug, name)

    warnings: List[ParserWarning] = []

    demo = None
    if "demo" in by_kind:
        demo = _build_demo(by_kind["demo"].content, slug, warnings)

    dependencies: List[PromptDependency] = []
    if "dependencies" in by_kind:
        dependencies = _build_dependencies(by_kind["dependencies"].content, warnings)

    styles: List[PromptFile] = []
    if "styles" in by_kind:
        styles = _build_styles(by_kind["styles"].content, warnings)

    assets: List[PromptAsset] = []
    if "assets" in by_kind:
        assets = _build_assets(by_kind["assets"].content, warnings)

    npm_packages: List[NpmPackage] = []
    if "npm" in by_kind:
        npm_packages = _build_npm_packages(by_kind["npm"].content, warnings)

    for kind, message in _MISSING_SECTION_MESSAGES.items():
        if kind not in by_kind:
            warnings.append(ParserWarning(section=kind, message=message))

    notes = _build_notes(by_kind["notes"].content) if "notes" in by_kind else []

    prompt = ParsedPrompt(
        name=name,
        slug=slug,
        description=description,
        component=component,
        demo=demo,
        dependencies=dependencies,
        styles=styles,
        assets=assets,
        npm_packages=npm_packages,
        notes=notes,
    )
    logger.debug(
        "Parsed prompt '%s' (%d sections, %d warnings)", name, len(sections), len(warnings)
    )
    return PromptParseResult(prompt=prompt, warnings=warnings)


def _parse_json_prompt(json_text: str) -> PromptParseResult:
    try:
        parsed: Any = json.loads(json_text)
    except json.JSONDecodeError as exc:
        raise PromptParseError(f"Unable to parse prompt JSON: {exc}") from exc

    if not isinstance(parsed, dict):
        raise PromptParseError("Prompt JSON must be an object describing ParsedPrompt")

    component = parsed.get("component")
    if not isinstance(component, dict) or not component.get("code"):
        raise PromptParseError("Prompt JSON missing component code")

    candidate = dict(parsed)
    candidate["name"] = candidate.get("name") or DEFAULT_PROMPT_NAME
    candidate["slug"] = slugify(candidate.get("slug") or candidate["name"]) or None

    try:
        prompt = ParsedPrompt.model_validate(candidate)
    except ValidationError as exc:
        raise PromptParseError(f"Prompt JSON does not describe a valid prompt: {exc}") from exc

    return PromptParseResult(prompt=prompt, warnings=[])


def _fence_spans(markdown: str) -> List[Tuple[int, int]]:
    return [match.span() for match in _FENCE_RE.finditer(markdown)]


def _split_sections(markdown: str) -> Tuple[str, List[_Section]]:
    spans = _fence_spans(markdown)
    matches = [
        match
        for match in _HEADING_RE.finditer(markdown)
        if not any(start <= match.start() < end for start, end in spans)
    ]
    if not matches:
        return markdown.strip(), []

    front_matter = markdown[: matches[0].start()].strip()
    sections: List[_Section] = []
    for index, match in enumerate(matches):
        title = match.group(1).strip()
        end = matches[index + 1].start() if index + 1 < len(matches) else len(markdown)
        content = markdown[match.end() : end].strip()
        kind = resolve_section_kind(title)
        if kind:
            sections.append(_Section(kind=kind, title=title, content=content))
        else:
            logger.debug("Ignoring unrecognised prompt heading '%s'", title)

    return front_matter, sections


def _normalize_heading(title: str) -> str:
    normalized = re.sub(r"[`*_~]", "", title.lower())
    normalized = re.sub(r"[\s\-_/|]+", " ", normalized)
    return normalized.strip()


def score_alias(heading: str, alias: str) -> int:
    """Score how well a normalized heading matches one alias (0 = no match)."""

    alias_normalized = alias.lower()
    if heading == alias_normalized:
        return len(alias_normalized) * 2 + 100
    if alias_normalized in heading:
        return len(alias_normalized)
    return 0


def resolve_section_kind(title: str) -> Optional[SectionKind]:
    normalized = _normalize_heading(title)
    best_kind: Optional[SectionKind] = None
    best_score = 0

    for kind, aliases in SECTION_ALIASES.items():
        for alias in aliases:
            score = score_alias(normalized, alias)
            if score > best_score:
                best_kind, best_score = kind, score

    return best_kind


def _extract_metadata(front_matter: str) -> Tuple[Dict[str, str], List[str]]:
    metadata: Dict[str, str] = {}
    metadata_lines: List[str] = []
    lines = [line.strip() for line in re.split(r"\n+", front_matter)]

    for line in lines:
        if not line:
            continue
        match = _METADATA_RE.match(line)
        if not match:
            continue
        metadata_lines.append(line)
        target = _METADATA_KEYS.get(match.group("key").lower())
        if target:
            metadata[target] = match.group("value").strip()

    return metadata, metadata_lines


def _extract_title(front_matter: str) -> Optional[str]:
    match = _TITLE_RE.search(front_matter)
    return match.group(1).strip() if match else None


def _extract_description(front_matter: str, metadata_lines: List[str]) -> Optional[str]:
    if not front_matter:
        return None
    for line in front_matter.split("\n"):
        stripped = line.strip()
        if stripped and not stripped.startswith("#") and stripped not in metadata_lines:
            return stripped
    return None


def _parse_fence_info(info: str) -> Tuple[Optional[str], Dict[str, str]]:
    language: Optional[str] = None
    attributes: Dict[str, str] = {}

    for match in _FENCE_ATTR_RE.finditer(info):
        key, value, bare = match.groups()
        if bare is not None:
            if language is None:
                language = bare
            continue
        if not value:
            continue
        if len(value) >= 2 and value[0] == value[-1] and value[0] in {'"', "'"}:
            value = value[1:-1]
        attributes[key.lower()] = value

    return language, attributes


def _extract_fences(content: str) -> List[_Fence]:
    fences: List[_Fence] = []
    for match in _FENCE_RE.finditer(content):
        language, attributes = _parse_fence_info(match.group(1).strip())
        fences.append(_Fence(language=language, attributes=attributes, code=match.group(2).rstrip()))
    return fences


def guess_extension(language: Optional[str], fallback: str = "ts") -> str:
    if not language:
        return fallback
    lower = language.lower()
    if lower in {"ts", "tsx", "typescript"}:
        return "tsx" if lower == "tsx" else "ts"
    if lower in {"js", "jsx", "javascript"}:
        return "jsx" if lower == "jsx" else "js"
    if lower in {"css", "scss", "less"}:
        return lower
    if lower == "json":
        return "json"
    if lower in {"md", "markdown"}:
        return "md"
    if lower == "html":
        return "html"
    if lower in {"asset", "binary"}:
        return "bin"
    return fallback


def _build_component(fence: _Fence, slug: Optional[str], name: str) -> PromptComponent:
    filename = fence.attributes.get("filename")
    if not filename:
        base = slug or slugify(name or "component") or "component"
        filename = f"{base}.{guess_extension(fence.language, 'tsx')}"
    export_name = fence.attributes.get("export") or fence.attributes.get("exportname")
    return PromptComponent(code=fence.code, filename=filename, export_name=export_name)


def _build_demo(content: str, slug: Optional[str], warnings: List[ParserWarning]) -> Optional[PromptDemo]:
    fences = _extract_fences(content)
    if not fences:
        warnings.append(ParserWarning(section="demo", message="Demo section present but no code fence found."))
        return None
    fence = fences[0]
    filename = fence.attributes.get("filename") or (
        f"{slug or 'component-demo'}.demo.{guess_extension(fence.language)}"
    )
    return PromptDemo(code=fence.code, filename=filename)


def _build_dependencies(content: str, warnings: List[ParserWarning]) -> List[PromptDependency]:
    fences = _extract_fences(content)
    if not fences:
        warnings.append(
            ParserWarning(section="dependencies", message="Dependency section present but no code fence found.")
        )
        return []
    return [
        PromptDependency(
            filename=fence.attributes.get("filename") or f"dependency-{index}.{guess_extension(fence.language)}",
            content=fence.code,
            kind=fence.attributes.get("kind"),
        )
        for index, fence in enumerate(fences, start=1)
    ]


def _build_styles(content: str, warnings: List[ParserWarning]) -> List[PromptFile]:
    fences = _extract_fences(content)
    if not fences:
        warnings.append(ParserWarning(section="styles", message="Styles section present but no code fence found."))
        return []
    return [
        PromptFile(
            filename=fence.attributes.get("filename") or f"style-{index}.{guess_extension(fence.language, 'css')}",
            content=fence.code,
        )
        for index, fence in enumerate(fences, start=1)
    ]


def _build_assets(content: str, warnings: List[ParserWarning]) -> List[PromptAsset]:
    fences = _extract_fences(content)
    if not fences:
        warnings.append(ParserWarning(section="assets", message="Assets section present but no code fence found."))
        return []

    assets: List[PromptAsset] = []
    for index, fence in enumerate(fences, start=1):
        encoding = fence.attributes.get("encoding")
        if encoding not in {"utf8", "base64"}:
            encoding = None
        assets.append(
            PromptAsset(
                filename=fence.attributes.get("filename") or f"asset-{index}.{guess_extension(fence.language, 'bin')}",
                content=fence.code,
                encoding=encoding,
                content_type=fence.attributes.get("content-type") or fence.attributes.get("contenttype"),
            )
        )
    return assets


def _strip_fences(content: str) -> str:
    return _FENCE_RE.sub("", content).strip()


def parse_npm_line(line: str) -> Optional[NpmPackage]:
    """Parse ``name: version``, ``name version`` or ``name@version``."""

    cleaned = _NPM_LINE_PREFIX_RE.sub("", line.strip())
    cleaned = re.sub(r"\s{2,}", " ", cleaned).strip()
    if not cleaned:
        return None

    name = cleaned
    version: Optional[str] = None
    if ":" in cleaned:
        name, version = (part.strip() for part in cleaned.split(":", 1))
    else:
        parts = cleaned.split()
        if len(parts) > 1:
            name, version = parts[0], " ".join(parts[1:])
        else:
            at_index = cleaned.rfind("@")
            if at_index > 0:
                name, version = cleaned[:at_index].strip(), cleaned[at_index + 1 :].strip()

    name = re.sub(r"[,;]$", "", name)
    if version is not None:
        version = re.sub(r"[,;]$", "", re.sub(r"^v", "", version)) or None

    if not name:
        return None
    return NpmPackage(name=name, version=version)


def _build_npm_packages(content: str, warnings: List[ParserWarning]) -> List[NpmPackage]:
    packages = []
    for line in _strip_fences(content).split("\n"):
        package = parse_npm_line(line)
        if package:
            packages.append(package)

    if not packages:
        warnings.append(
            ParserWarning(
                section="npm",
                message="Unable to parse npm dependencies; ensure lines follow `package@version` format.",
            )
        )
    return packages


def _build_notes(content: str) -> List[str]:
    notes = []
    for line in _strip_fences(content).split("\n"):
        stripped = _LIST_MARKER_RE.sub("", line.strip()).strip()
        if stripped:
            notes.append(stripped)
    return notes
