"""Fix-suggestion round trip helpers.

After a failed iteration the agent is asked to analyse its own failure and
answer with a small JSON object::

    {"analysis": "...", "fix": "...", "fixType": "command|code|manual", "reasoning": "..."}

The object arrives embedded in free text (and hard-wrapped by the terminal),
so it is located by balanced-brace scanning rather than by parsing the
whole output.
"""

from __future__ import annotations

import json
from typing import Any, Iterator, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

FixType = Literal["command", "code", "manual"]


class FixSuggestion(BaseModel):
    """Structured remediation proposed by the agent.

    Attributes:
        analysis: What went wrong
        fix: Corrected command or code to run next
        fix_type: Whether ``fix`` is a command, code, or manual instructions
        reasoning: Why the fix should work
    """

    model_config = ConfigDict(populate_by_name=True)

    analysis: str = Field(default="")
    fix: str = Field(default="")
    fix_type: FixType = Field(default="command", alias="fixType")
    reasoning: str = Field(default="")

    @field_validator("analysis", "fix", "reasoning", mode="before")
    @classmethod
    def coerce_text(cls, v: Any) -> str:
        """Accept structured values by serialising them."""
        if v is None:
            return ""
        if isinstance(v, str):
            return v
        return json.dumps(v)

    @field_validator("fix_type", mode="before")
    @classmethod
    def normalise_fix_type(cls, v: Any) -> str:
        """Map unknown fix types to manual."""
        value = str(v or "command").strip().lower()
        return value if value in ("command", "code", "manual") else "manual"

    def to_json(self) -> str:
        """Serialise with the wire field names."""
        return self.model_dump_json(by_alias=True)


def iter_balanced_objects(text: str) -> Iterator[str]:
    """Yield top-level ``{...}`` spans in order of appearance.

    Braces inside JSON string literals are ignored.
    """
    depth = 0
    start = -1
    in_string = False
    escaped = False

    for i, char in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue

        if char == '"' and depth > 0:
            in_string = True
        elif char == "{":
            if depth == 0:
                start = i
            depth += 1
        elif char == "}" and depth > 0:
            depth -= 1
            if depth == 0:
                yield text[start : i + 1]


def extract_fix_suggestion(text: str) -> FixSuggestion | None:
    """Pull the fix-suggestion object out of cleaned agent output.

    The first balanced object that decodes to a mapping with a ``fix`` key
    wins. When no such object exists the trimmed output itself is used as a
    command fix.

    Args:
        text: Cleaned agent output

    Returns:
        FixSuggestion, or None when the output is empty.
    """
    stripped = text.strip()
    if not stripped:
        return None

    found_object = False
    for span in iter_balanced_objects(stripped):
        found_object = True
        try:
            # Terminal wrapping leaves raw newlines inside string values.
            payload = json.loads(span, strict=False)
        except ValueError:
            continue
        if isinstance(payload, dict) and "fix" in payload:
            try:
                return FixSuggestion.model_validate(payload)
            except ValidationError:
                continue

    return FixSuggestion(
        analysis="Could not parse agent response" if found_object else "Agent response format unclear",
        fix=stripped,
        fix_type="command",
        reasoning="Raw agent response",
    )


def _excerpt(text: str | None, limit: int) -> str:
    if not text:
        return ""
    text = text.strip()
    return text if len(text) <= limit else text[-limit:]


def build_error_analysis_prompt(
    title: str,
    description: str | None,
    original_command: str,
    command: str,
    error: str | None,
    stdout: str | None,
    stderr: str | None,
    iteration: int,
    project_id: str,
    project_path: str,
    excerpt_chars: int = 2000,
) -> str:
    """Build the prompt asking the agent to analyse a failed iteration.

    Output excerpts keep the tail of stdout/stderr, which is where errors
    usually are.
    """
    sections = [
        f"TASK TITLE: {title}",
        f"TASK DESCRIPTION: {description or ''}",
        f"ORIGINAL CODE/COMMAND: {original_command}",
        "",
        f"EXECUTION FAILURE (attempt {iteration}):",
        f"Command: {command}",
        f"Error: {error or 'unknown'}",
    ]
    out = _excerpt(stdout, excerpt_chars)
    if out:
        sections += ["", "Stdout:", out]
    err = _excerpt(stderr, excerpt_chars)
    if err:
        sections += ["", "Stderr:", err]
    sections += [
        "",
        "PROJECT CONTEXT:",
        f"Project: {project_id}",
        f"Working Directory: {project_path}",
        "",
        "Analyse why this attempt did not succeed and propose a corrected command or code "
        "snippet. If a directory conflict or missing prerequisite caused it, propose the step "
        "that resolves it. Do not apply the change yourself.",
        "",
        "Answer with one JSON object with the keys analysis, fix, fixType and reasoning. "
        "fixType must be one of command, code or manual.",
    ]
    return "\n".join(sections)
