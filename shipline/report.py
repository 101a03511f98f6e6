"""Markdown and JSON run summaries."""

from __future__ import annotations

import importlib.resources
import json
from pathlib import Path

from jinja2 import Template

from shipline.pipeline.results import RunResult, RunStatus

_STATUS_LABELS = {
    RunStatus.SUCCEEDED: "✅ succeeded",
    RunStatus.PARTIALLY_FAILED: "⚠️ partially failed",
    RunStatus.FAILED: "❌ failed",
}


def render_summary(result: RunResult, *, include_outputs: bool = True) -> str:
    """Render a markdown summary suitable for ``$GITHUB_STEP_SUMMARY``."""
    pkg_files = importlib.resources.files("shipline._report_templates")
    template_text = (pkg_files / "summary.md.j2").read_text(encoding="utf-8")
    template = Template(template_text, trim_blocks=True)

    published = []
    if include_outputs:
        for sr in result.step_results:
            shown = {k: v for k, v in sr.outputs.items() if k != "stdout"}
            if shown:
                published.append((sr.name, shown))

    data = result.to_dict()
    return template.render(
        status_label=_STATUS_LABELS.get(result.status, str(result.status)),
        published=published,
        **data,
    )


def export_summary(result: RunResult, output_path: Path, *, append: bool = False) -> Path:
    """Write the markdown summary to *output_path*.

    With *append*, the summary is added to the end of an existing file,
    which is how CI step-summary files are meant to be written.
    """
    content = render_summary(result)
    output_path = Path(output_path)
    mode = "a" if append else "w"
    with output_path.open(mode, encoding="utf-8") as fh:
        fh.write(content)
    return output_path


def export_json(result: RunResult, output_path: Path) -> Path:
    output_path = Path(output_path)
    output_path.write_text(json.dumps(result.to_dict(), indent=2) + "\n", encoding="utf-8")
    return output_path
