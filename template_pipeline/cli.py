"""Command line entry point: ``template-pipeline build|parse|report``."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from template_pipeline.component_builder import ComponentBuildError
from template_pipeline.job_scheduler import SchedulerOptions, build_weekly_report
from template_pipeline.log_config import setup_logging
from template_pipeline.package_patch import PackagePatchResult
from template_pipeline.pipeline_metrics import PipelineMetricsCollector
from template_pipeline.pipeline_orchestrator import PipelineError, run_pipeline
from template_pipeline.preview_builder import PreviewBuildError
from template_pipeline.prompt_parser import PromptParseError, parse_prompt
from template_pipeline.schema_generator import SchemaGenerationError


logger = logging.getLogger(__name__)

PARSE_STAGE = "parse"

_HARD_ERRORS = (
    OSError,
    PromptParseError,
    SchemaGenerationError,
    ComponentBuildError,
    PreviewBuildError,
    PipelineError,
)


def _patch_to_dict(patch: PackagePatchResult) -> Dict[str, Any]:
    return {
        "addDependencies": [dep.model_dump(exclude_none=True) for dep in patch.add_dependencies],
        "existingConflicts": [dep.model_dump(exclude_none=True) for dep in patch.existing_conflicts],
        "stylePatch": [{"path": entry.path, "content": entry.content} for entry in patch.style_patch],
        "warnings": list(patch.warnings),
    }


def _read_prompt(path: str) -> str:
    return Path(path).read_text(encoding="utf-8")


def _cmd_parse(args: argparse.Namespace) -> int:
    result = parse_prompt(_read_prompt(args.prompt))
    for warning in result.warnings:
        logger.warning("[%s] %s", warning.section, warning.message)
    print(json.dumps(result.prompt.model_dump(by_alias=True, exclude_none=True), indent=2, ensure_ascii=False))
    return 0


def _cmd_build(args: argparse.Namespace) -> int:
    parsed = parse_prompt(_read_prompt(args.prompt))
    result = run_pipeline(
        parsed.prompt,
        user_id=args.user,
        existing_package_json_path=args.package_json,
        existing_tailwind_config_path=args.tailwind_config,
    )

    out_path = Path(args.out or f"{result.slug}.zip")
    out_path.write_bytes(result.zip_bytes)

    warnings: List[str] = [f"[{w.section}] {w.message}" for w in parsed.warnings] + result.warnings
    print(
        json.dumps(
            {
                "slug": result.slug,
                "zip": str(out_path),
                "outDir": result.out_dir,
                "packagePatch": _patch_to_dict(result.package_patch),
                "warnings": warnings,
            },
            indent=2,
            ensure_ascii=False,
        )
    )
    return 0


def _cmd_report(args: argparse.Namespace) -> int:
    """Package each prompt once and print the digest of those runs."""

    metrics = PipelineMetricsCollector()
    for path in args.prompts:
        try:
            parsed = parse_prompt(_read_prompt(path))
        except (OSError, PromptParseError) as exc:
            logger.error("report.parse_failed path=%s: %s", path, exc)
            metrics.record_failure(PARSE_STAGE, str(exc), metadata={"path": path})
            continue
        try:
            run_pipeline(
                parsed.prompt,
                user_id=args.user,
                request_id=path,
                existing_package_json_path=args.package_json,
                existing_tailwind_config_path=args.tailwind_config,
                metrics=metrics,
            )
        except _HARD_ERRORS as exc:
            logger.error("report.build_failed path=%s: %s", path, exc)

    snapshot = metrics.snapshot(SchedulerOptions().report_window_ms)
    print(build_weekly_report(snapshot, metrics.status_breakdown()))
    return 1 if snapshot.failure else 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="template-pipeline", description="Turn component prompts into template archives.")
    parser.add_argument("--log-level", default="INFO", help="Logging level (default: INFO)")
    sub = parser.add_subparsers(dest="command", required=True)

    build = sub.add_parser("build", help="Parse a prompt file and package it as a template zip")
    build.add_argument("prompt", help="Path to a markdown or JSON prompt")
    build.add_argument("--out", help="Where to write the zip (default: <slug>.zip)")
    build.add_argument("--package-json", dest="package_json", help="Existing package.json to diff against")
    build.add_argument("--tailwind-config", dest="tailwind_config", help="Existing tailwind config for style dedupe")
    build.add_argument("--user", default="cli", help="User id recorded for the run")
    build.set_defaults(func=_cmd_build)

    parse = sub.add_parser("parse", help="Print the parsed prompt as JSON")
    parse.add_argument("prompt", help="Path to a markdown or JSON prompt")
    parse.set_defaults(func=_cmd_parse)

    report = sub.add_parser("report", help="Package prompt files and print the digest of those runs")
    report.add_argument("prompts", nargs="+", help="Markdown or JSON prompt files")
    report.add_argument("--package-json", dest="package_json", help="Existing package.json to diff against")
    report.add_argument("--tailwind-config", dest="tailwind_config", help="Existing tailwind config for style dedupe")
    report.add_argument("--user", default="cli", help="User id recorded for the runs")
    report.set_defaults(func=_cmd_report)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level)
    try:
        return args.func(args)
    except _HARD_ERRORS as exc:
        logger.error("%s: %s", type(exc).__name__, exc)
        return 1


if __name__ == "__main__":
    sys.exit(main())
