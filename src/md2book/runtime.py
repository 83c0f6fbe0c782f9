"""Runtime access to a rendered book.

Consumers normally read the artifact written by ``md2book`` ahead of time.
When it is missing, the same pipeline runs in memory against the source.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional

from .core import (
    LOG,
    FootnoteDefinition,
    PipelineOutput,
    RenderConfig,
    build_navigation_outline,
    load_artifact,
    render_document,
    serialize_navigation,
)


def render_inline(source: str, config: Optional[RenderConfig] = None) -> PipelineOutput:
    return render_document(source, config)


def load_document(
    artifact_dir: Optional[Path] = None,
    *,
    source: Optional[str] = None,
    source_path: Optional[Path] = None,
    config: Optional[RenderConfig] = None,
) -> PipelineOutput:
    if artifact_dir is not None:
        output = load_artifact(artifact_dir, config)
        if output is not None:
            LOG.debug("Loaded prebuilt artifact from %s", artifact_dir)
            return output
        LOG.info("No prebuilt artifact in %s; rendering inline", artifact_dir)

    if source is None and source_path is not None:
        if not source_path.is_file():
            raise FileNotFoundError(f"Source file not found: {source_path}")
        source = source_path.read_text(encoding="utf-8")

    if source is None:
        raise FileNotFoundError("Neither a prebuilt artifact nor a book source is available")
    return render_inline(source, config)


def resolve_footnote(output: PipelineOutput, footnote_id: str) -> Optional[FootnoteDefinition]:
    # dangling references resolve to nothing
    return output.footnotes.get(footnote_id)


def navigation_outline(output: PipelineOutput) -> List[Dict[str, Any]]:
    return serialize_navigation(build_navigation_outline(output.content_tree))
