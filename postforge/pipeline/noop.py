# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""Deterministic default stage handlers.

These handlers satisfy the stage contract without calling any external
service, allowing the server to drive jobs end to end out of the box. Real
deployments point POSTFORGE_HANDLERS at their own factory.
"""

from __future__ import annotations

import re
from typing import Any

from postforge.core.types import LogStatus, ProgressCallback, StageEvent
from postforge.pipeline.handlers import StageHandlers
from postforge.pipeline.state import JobState


def slugify(text: str) -> str:
    """Turn a topic into a filesystem and branch friendly slug."""
    slug = re.sub(r"[^\w\s-]", "", text.lower(), flags=re.UNICODE)
    slug = re.sub(r"[\s_-]+", "-", slug).strip("-")
    return slug or "post"


async def research(state: JobState, on_progress: ProgressCallback) -> dict[str, Any]:
    """Record the brief as the only research source."""
    await on_progress(
        StageEvent(step="research", message=f"Researching: {state.topic}", progress=0.5)
    )
    return {"research_data": {"topic": state.topic, "brief": state.brief, "sources": []}}


async def write(state: JobState, on_progress: ProgressCallback) -> dict[str, Any]:
    """Draft a post skeleton, appending reviewer feedback when present."""
    sections = [f"# {state.topic}", "", state.brief]
    if state.human_feedback:
        await on_progress(
            StageEvent(step="write", message="Applying reviewer feedback", progress=0.5)
        )
        sections += ["", f"> Revised after feedback: {state.human_feedback}"]
    return {"draft_content": "\n".join(sections)}


async def review(state: JobState, on_progress: ProgressCallback) -> dict[str, Any]:
    """Score the draft by length only."""
    draft = state.draft_content or ""
    issues = [] if draft.strip() else ["Draft is empty"]
    return {
        "review_result": {
            "seo_score": min(100, len(draft) // 10),
            "tech_accuracy": 100 if not issues else 0,
            "suggestions": [],
            "issues": issues,
        }
    }


async def create(state: JobState, on_progress: ProgressCallback) -> dict[str, Any]:
    """Promote the draft to final content and derive metadata.

    Content and metadata a reviewer already set take precedence.
    """
    metadata: dict[str, Any] = {
        "title": state.topic,
        "slug": slugify(state.topic),
        "category": str(state.category),
        "template": str(state.template) if state.template else None,
        "tags": [],
    }
    metadata.update(state.metadata or {})
    return {
        "final_content": state.final_content or state.draft_content or "",
        "metadata": metadata,
    }


async def emit(state: JobState, on_progress: ProgressCallback) -> dict[str, Any]:
    """Report the path the post would be written to."""
    slug = (state.metadata or {}).get("slug") or slugify(state.topic)
    return {"filepath": f"posts/{state.category}/{slug}.md"}


async def validate(state: JobState, on_progress: ProgressCallback) -> dict[str, Any]:
    """Require non-empty final content and a file path."""
    errors: list[str] = []
    if not (state.final_content or "").strip():
        errors.append("Final content is empty")
    if not state.filepath:
        errors.append("Post file was not emitted")
    if errors:
        await on_progress(
            StageEvent(
                step="validate",
                status=LogStatus.ERROR,
                message=f"Validation failed: {'; '.join(errors)}",
            )
        )
    return {"validation_result": {"passed": not errors, "errors": errors}}


async def deploy(state: JobState, on_progress: ProgressCallback) -> dict[str, Any]:
    """Describe the branch a deploy would push, without a pull request."""
    slug = (state.metadata or {}).get("slug") or slugify(state.topic)
    return {"pr_result": {"branch_name": f"post/{slug}"}}


def create_noop_handlers() -> StageHandlers:
    """Return the default deterministic handler set."""
    return StageHandlers(
        research=research,
        write=write,
        review=review,
        create=create,
        emit=emit,
        validate=validate,
        deploy=deploy,
    )
