"""GitHub push event parsing for the content re-indexing hand-off."""

from typing import Any, Mapping

from pydantic import BaseModel, Field

from agentcommons.exceptions import WebhookError


class PushEvent(BaseModel):
    """Markdown paths touched by a push, in first-seen order."""

    commit_sha: str = ""
    ref: str = ""
    changed_paths: list[str] = Field(default_factory=list)


def parse_push_event(payload: Mapping[str, Any], suffix: str = ".md") -> PushEvent:
    """Collect added and modified paths ending in *suffix* from a push payload.

    Removed paths are ignored.

    Raises:
        WebhookError: If the payload is not a JSON object.
    """
    if not isinstance(payload, Mapping):
        raise WebhookError("Push payload must be a JSON object")

    commits = payload.get("commits")
    if not isinstance(commits, list):
        commits = []

    seen: dict[str, None] = {}
    for commit in commits:
        if not isinstance(commit, Mapping):
            continue
        for path in [*(commit.get("added") or []), *(commit.get("modified") or [])]:
            if isinstance(path, str) and path.endswith(suffix):
                seen.setdefault(path, None)

    return PushEvent(
        commit_sha=str(payload.get("after") or ""),
        ref=str(payload.get("ref") or ""),
        changed_paths=list(seen),
    )
