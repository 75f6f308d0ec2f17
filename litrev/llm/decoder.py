"""Strict decoders for structured LLM replies.

Decoding fails closed: anything that does not match the expected shape
raises :class:`MalformedResponseError` so the caller can re-prompt.
"""

import json
import re
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from litrev.exceptions import MalformedResponseError
from litrev.utils.logging import get_logger

log = get_logger(__name__)


class PaperDecision(BaseModel):
    """One include/exclude judgment."""

    model_config = ConfigDict(extra="ignore")

    decision: bool = Field(validation_alias=AliasChoices("decision", "meets_criteria"))
    reasoning: str = ""


class PaperCategory(BaseModel):
    """Primary research category of one paper."""

    model_config = ConfigDict(extra="ignore")

    category: str = Field(min_length=1)
    confidence: float = Field(ge=0, le=1)


class DraftSections(BaseModel):
    """The sections of a literature review draft."""

    model_config = ConfigDict(extra="ignore")

    abstract: str
    introduction: str
    methodology: str
    results: str
    discussion: str
    conclusion: str

    @property
    def size(self) -> int:
        """Total characters across all sections."""
        return sum(len(text) for text in self.model_dump().values())


_BATCH_ADAPTER = TypeAdapter(dict[str, PaperDecision])
_CATEGORY_ADAPTER = TypeAdapter(dict[str, PaperCategory])

# A backslash that starts a valid JSON escape, or any other backslash.
# \b and \f followed by letters are LaTeX commands (\begin, \frac), not escapes.
_JSON_ESCAPE = re.compile(r'\\(["\\/]|u[0-9a-fA-F]{4}|[bfnrt](?![A-Za-z]))|\\')


def _strip_code_fences(content: str) -> str:
    content = content.strip()
    if not content.startswith("```"):
        return content

    lines = []
    in_block = False
    for line in content.split("\n"):
        if line.startswith("```"):
            in_block = not in_block
            continue
        if in_block:
            lines.append(line)
    return "\n".join(lines)


def extract_json_object(content: str) -> str:
    """Return the outermost ``{...}`` span of a reply.

    Raises:
        MalformedResponseError: If the reply holds no JSON object
    """
    content = _strip_code_fences(content)
    start = content.find("{")
    end = content.rfind("}")
    if start == -1 or end <= start:
        raise MalformedResponseError("No JSON object found in response", raw=content)
    return content[start : end + 1]


def escape_latex_backslashes(json_text: str) -> str:
    """Double every backslash that is not a valid JSON escape.

    Models writing LaTeX inside JSON strings often emit ``\\cite{...}`` with a
    single backslash, which is invalid JSON.
    """
    return _JSON_ESCAPE.sub(lambda m: m.group(0) if m.group(1) else "\\\\", json_text)


def _load_json(content: str) -> Any:
    json_text = extract_json_object(content)
    try:
        return json.loads(json_text)
    except json.JSONDecodeError:
        pass

    try:
        data = json.loads(escape_latex_backslashes(json_text))
    except json.JSONDecodeError as e:
        raise MalformedResponseError(f"Invalid JSON: {e}", raw=content) from e
    log.debug("Parsed JSON after escaping backslashes")
    return data


def _decode_batch(content: str, expected_ids: list[str], adapter: TypeAdapter) -> dict[str, Any]:
    data = _load_json(content)
    # Accept a {"results": {...}} wrapper
    if isinstance(data, dict) and set(data) == {"results"} and isinstance(data["results"], dict):
        data = data["results"]

    try:
        results = adapter.validate_python(data)
    except ValidationError as e:
        raise MalformedResponseError(
            f"Response does not match schema: {e.error_count()} errors", raw=content
        ) from e

    expected = set(expected_ids)
    missing = expected - results.keys()
    unknown = results.keys() - expected
    if missing or unknown:
        raise MalformedResponseError(
            "Response ids do not match batch "
            f"(missing={sorted(missing)}, unknown={sorted(unknown)})",
            raw=content,
        )
    return results


def decode_batch_decisions(content: str, expected_ids: list[str]) -> dict[str, PaperDecision]:
    """Decode a batch reply mapping every paper id to a decision.

    Args:
        content: Raw model reply
        expected_ids: Paper ids sent in the batch

    Returns:
        Mapping of paper id to decision, exactly covering ``expected_ids``

    Raises:
        MalformedResponseError: On invalid JSON, wrong shape, missing or unknown ids
    """
    return _decode_batch(content, expected_ids, _BATCH_ADAPTER)


def decode_batch_categories(content: str, expected_ids: list[str]) -> dict[str, PaperCategory]:
    """Decode a batch reply mapping every paper id to its category.

    Raises:
        MalformedResponseError: On invalid JSON, a blank category, a confidence
            outside 0-1, missing or unknown ids
    """
    return _decode_batch(content, expected_ids, _CATEGORY_ADAPTER)


def decode_draft(content: str) -> DraftSections:
    """Decode a draft reply into its sections.

    Raises:
        MalformedResponseError: On invalid JSON or missing sections
    """
    data = _load_json(content)
    try:
        return DraftSections.model_validate(data)
    except ValidationError as e:
        raise MalformedResponseError(
            f"Draft does not match schema: {e.error_count()} errors", raw=content
        ) from e


def batch_response_schema(paper_ids: list[str]) -> dict[str, Any]:
    """JSON schema for a batch reply, passed to the provider's JSON mode."""
    decision = {
        "type": "object",
        "properties": {
            "decision": {"type": "boolean"},
            "reasoning": {"type": "string"},
        },
        "required": ["decision", "reasoning"],
    }
    return {
        "type": "object",
        "properties": {paper_id: decision for paper_id in paper_ids},
        "required": list(paper_ids),
    }


def category_response_schema(paper_ids: list[str]) -> dict[str, Any]:
    """JSON schema for a category batch reply."""
    category = {
        "type": "object",
        "properties": {
            "category": {"type": "string"},
            "confidence": {"type": "number"},
        },
        "required": ["category", "confidence"],
    }
    return {
        "type": "object",
        "properties": {paper_id: category for paper_id in paper_ids},
        "required": list(paper_ids),
    }
