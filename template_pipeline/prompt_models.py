"""Pydantic models for parsed component prompts.

A prompt describes one UI component plus the files it needs. Markdown prompts
are parsed into these models; JSON prompts are validated against them
directly.

Design goals:
- Forward compatible: allow unknown extra fields on JSON prompts.
- camelCase on the wire, snake_case in Python.
"""

from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


SectionKind = Literal[
    "component",
    "demo",
    "dependencies",
    "styles",
    "assets",
    "npm",
    "notes",
]

AssetEncoding = Literal["utf8", "base64"]


class PromptComponent(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    code: str
    filename: Optional[str] = None
    export_name: Optional[str] = Field(None, alias="exportName")


class PromptDemo(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    code: str
    filename: Optional[str] = None


class PromptFile(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    filename: str
    content: str


class PromptDependency(PromptFile):
    kind: Optional[str] = None


class PromptAsset(PromptFile):
    encoding: Optional[AssetEncoding] = None
    content_type: Optional[str] = Field(None, alias="contentType")


class NpmPackage(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    name: str
    version: Optional[str] = None


class ParsedPrompt(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    name: str
    slug: Optional[str] = None
    description: Optional[str] = None
    component: PromptComponent
    demo: Optional[PromptDemo] = None
    dependencies: List[PromptDependency] = Field(default_factory=list)
    styles: List[PromptFile] = Field(default_factory=list)
    assets: List[PromptAsset] = Field(default_factory=list)
    npm_packages: List[NpmPackage] = Field(default_factory=list, alias="npmPackages")
    notes: List[str] = Field(default_factory=list)


class ParserWarning(BaseModel):
    section: str
    message: str
