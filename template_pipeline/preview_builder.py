"""Render the static ``preview.html`` shipped with every component package."""

from __future__ import annotations

import html
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional


PREVIEW_FILENAME = "preview.html"

_TEMPLATE = """<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8" />
  <title>{title} Preview</title>
  <link rel="stylesheet" href="/preview.css" />
</head>
<body>
  <div id="root"></div>
  <script type="module">
    import Component from {component_path};
{render_block}
    const container = document.getElementById('root');
    if (container) {{
      container.innerHTML = '';
      if (typeof app === 'string') {{
        container.innerHTML = app;
      }} else if (app && app.outerHTML) {{
        container.appendChild(app);
      }} else {{
        container.innerText = '[Preview rendering not implemented]';
      }}
    }}
  </script>
</body>
</html>
"""

_DEMO_BLOCK = """    import Demo from {demo_path};
    const Preview = Demo ?? Component;
    const app = Preview instanceof Function ? Preview() : Preview;"""

_COMPONENT_BLOCK = """    const Preview = Component instanceof Function ? Component() : Component;
    const app = Preview;"""


class PreviewBuildError(RuntimeError):
    """Raised when the preview document cannot be generated."""


@dataclass
class PreviewBuildResult:
    preview_html: str
    preview_path: str
    warnings: List[str] = field(default_factory=list)


def _module_specifier(relative_path: str) -> str:
    return json.dumps(f"./{relative_path}")


def render_preview_html(slug: str, component_file: str, demo_file: Optional[str] = None) -> str:
    if demo_file:
        render_block = _DEMO_BLOCK.format(demo_path=_module_specifier(demo_file))
    else:
        render_block = _COMPONENT_BLOCK
    return _TEMPLATE.format(
        title=html.escape(slug),
        component_path=_module_specifier(component_file),
        render_block=render_block,
    )


def build_preview(
    out_dir: str,
    component_file: str,
    slug: str,
    demo_file: Optional[str] = None,
) -> PreviewBuildResult:
    if not component_file:
        raise PreviewBuildError("component_file missing")

    preview_html = render_preview_html(slug, component_file, demo_file)
    preview_path = Path(out_dir) / PREVIEW_FILENAME
    preview_path.write_text(preview_html, encoding="utf-8")

    warnings: List[str] = []
    if not demo_file:
        warnings.append("Preview rendered without demo; fallback to component export")

    return PreviewBuildResult(preview_html=preview_html, preview_path=str(preview_path), warnings=warnings)
