"""
Model Output Schemas
=====================

Strict schemas for the JSON the model returns. Model output is parsed and
validated in one step; anything that does not fit is rejected with
MalformedResponseException rather than read field-by-field.
"""

import json
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

from helpdesk.config import (
    MAX_PATTERNS_PER_BATCH, PATTERN_MIN_FREQUENCY, PATTERN_MIN_SUCCESS_RATE
)
from helpdesk.core import MalformedResponseException

TITLE_MAX_LENGTH = 100
SUMMARY_MAX_LENGTH = 200
MAX_TAGS = 5


def _round_number(v: Any) -> Any:
    if isinstance(v, float):
        return round(v)
    if isinstance(v, str):
        try:
            return round(float(v))
        except ValueError:
            return v
    return v


class ExtractedPattern(BaseModel):
    """One resolution pattern as reported by the model."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    problem_type: str = Field(alias="problemType", min_length=1)
    common_solutions: List[str] = Field(default_factory=list, alias="commonSolutions")
    preventive_measures: List[str] = Field(default_factory=list, alias="preventiveMeasures")
    frequency: int = Field(ge=1, le=10)
    average_resolution_time: float = Field(default=0.0, ge=0, alias="averageResolutionTime")
    success_rate: int = Field(ge=0, le=100, alias="successRate")

    @field_validator("frequency", "success_rate", mode="before")
    @classmethod
    def round_scores(cls, v: Any) -> Any:
        return _round_number(v)

    @field_validator("problem_type")
    @classmethod
    def strip_problem_type(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("problemType must not be blank")
        return v

    @property
    def is_promotable(self) -> bool:
        """Promotion gate for article generation (both bounds inclusive)."""
        return self.frequency >= PATTERN_MIN_FREQUENCY and self.success_rate >= PATTERN_MIN_SUCCESS_RATE

    @property
    def description(self) -> str:
        """Text used to compare this pattern with stored ones."""
        solutions = "; ".join(self.common_solutions)
        return f"{self.problem_type}\n{solutions}" if solutions else self.problem_type


class ArticleDraft(BaseModel):
    """Structured article returned by the model, before dedup and persistence."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    title: str = Field(min_length=1)
    summary: str = ""
    content: str = Field(min_length=1)
    category: Optional[str] = None
    tags: List[str] = Field(min_length=1)
    difficulty: Literal["beginner", "intermediate", "advanced"] = "intermediate"
    estimated_read_time: int = Field(default=5, ge=1, le=120, alias="estimatedReadTime")
    confidence: int = Field(ge=0, le=100)

    @field_validator("estimated_read_time", "confidence", mode="before")
    @classmethod
    def round_numbers(cls, v: Any) -> Any:
        return _round_number(v)

    @field_validator("title")
    @classmethod
    def trim_title(cls, v: str) -> str:
        return v.strip()[:TITLE_MAX_LENGTH]

    @field_validator("summary")
    @classmethod
    def trim_summary(cls, v: str) -> str:
        return v.strip()[:SUMMARY_MAX_LENGTH]

    @field_validator("difficulty", mode="before")
    @classmethod
    def lower_difficulty(cls, v: Any) -> Any:
        return v.strip().lower() if isinstance(v, str) else v

    @field_validator("tags")
    @classmethod
    def normalise_tags(cls, v: List[str]) -> List[str]:
        tags: List[str] = []
        for tag in v:
            tag = tag.strip().lower()
            if tag and tag not in tags:
                tags.append(tag)
        if not tags:
            raise ValueError("at least one non-blank tag is required")
        return tags[:MAX_TAGS]

    @property
    def effective_summary(self) -> str:
        """Summary, or the first content line when the model omitted one."""
        if self.summary:
            return self.summary
        for line in self.content.splitlines():
            line = line.strip().lstrip("#").strip()
            if line:
                return line[:SUMMARY_MAX_LENGTH]
        return self.title

    @property
    def dedup_text(self) -> str:
        return f"{self.title}\n{self.effective_summary}"

    @property
    def embedding_text(self) -> str:
        return f"{self.title}\n{self.effective_summary}\n{self.content}"


_PATTERN_LIST = TypeAdapter(List[ExtractedPattern])


def parse_model_json(raw: str) -> Any:
    """
    Decode JSON from a model response, tolerating markdown code fences.

    Raises:
        MalformedResponseException: No decodable JSON in the response
    """
    text = (raw or "").strip()
    if "```json" in text:
        text = text.split("```json", 1)[1].split("```", 1)[0].strip()
    elif "```" in text:
        text = text.split("```", 1)[1].split("```", 1)[0].strip()

    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise MalformedResponseException(f"Model response is not valid JSON: {e.msg}", raw=raw)


def parse_patterns(raw: str) -> List[ExtractedPattern]:
    """
    Parse a pattern-extraction response, keeping at most the top five.

    Raises:
        MalformedResponseException: Not JSON, or not a list of valid patterns
    """
    data = parse_model_json(raw)
    if isinstance(data, dict) and isinstance(data.get("patterns"), list):
        data = data["patterns"]
    if not isinstance(data, list):
        raise MalformedResponseException("Pattern response must be a JSON array", raw=raw)

    try:
        patterns = _PATTERN_LIST.validate_python(data)
    except ValidationError as e:
        raise MalformedResponseException(
            f"Pattern response failed validation: {e.error_count()} error(s)",
            raw=raw,
            details={"errors": e.errors(include_url=False, include_context=False, include_input=False)}
        )
    return patterns[:MAX_PATTERNS_PER_BATCH]


def parse_article(raw: str) -> ArticleDraft:
    """
    Parse an article-generation response.

    Raises:
        MalformedResponseException: Not a JSON object matching ArticleDraft
    """
    data = parse_model_json(raw)
    if not isinstance(data, dict):
        raise MalformedResponseException("Article response must be a JSON object", raw=raw)
    try:
        return ArticleDraft.model_validate(data)
    except ValidationError as e:
        raise MalformedResponseException(
            f"Article response failed validation: {e.error_count()} error(s)",
            raw=raw,
            details={"errors": e.errors(include_url=False, include_context=False, include_input=False)}
        )
