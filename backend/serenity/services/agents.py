# insight agent runner — one role-specific prompt per agent over a slice of the snapshot
#
# output parsing is two-stage:
#   1. strip code fences and parse the whole reply against the role's shape
#   2. otherwise parse the first balanced {...} / [...] substring
# the parse returns a tagged result; the runner turns a failure into AgentOutputError

import copy
import json
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional, Protocol, Union

from pydantic import TypeAdapter, ValidationError

from serenity.config import settings
from serenity.errors import AgentOutputError
from serenity.models.dashboard import EffectivenessInsight, RawSnapshot, ResponseAnalysis

logger = logging.getLogger(__name__)


class AgentRole(str, Enum):
    EFFECTIVENESS = "effectiveness"
    SIGNIFICANT_PATTERNS = "significantPatterns"
    CORRELATIONS = "correlations"
    TEMPORAL_TRENDS = "temporalTrends"
    RECOMMENDATIONS = "recommendations"
    RESPONSE_ANALYSIS = "responseAnalysis"


class GenerationBackend(Protocol):
    async def generate(self, prompt: str) -> str: ...


# tagged parse result

@dataclass(frozen=True)
class ParsedOutput:
    value: Any


@dataclass(frozen=True)
class ParseFailure:
    reason: str


ParseResult = Union[ParsedOutput, ParseFailure]


_FENCE_RE = re.compile(r"```(?:json)?", re.IGNORECASE)
_CLOSERS = {"{": "}", "[": "]"}


def strip_code_fences(text: str) -> str:
    return _FENCE_RE.sub("", text).strip()


def _scan(text: str, start: int, opener: str) -> tuple[Optional[tuple[int, int]], Optional[int]]:
    """walk text from start, skipping json string literals.

    returns the earliest-starting closed opener span seen, plus the index of
    a mismatched closer if the walk stopped on one. every opener still open
    at a mismatch sees the same mismatch, so the caller resumes after it.
    """
    stack: list[tuple[str, int]] = []
    best = None
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        char = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue

        if char == '"':
            in_string = True
        elif char in _CLOSERS:
            stack.append((_CLOSERS[char], i))
        elif char in ("}", "]"):
            if not stack or stack[-1][0] != char:
                return best, i
            _, opened = stack.pop()
            if text[opened] == opener and (best is None or opened < best[0]):
                best = (opened, i)
            if not stack:
                return best, None
    return best, None


def extract_balanced(text: str, opener: str = "{") -> Optional[str]:
    """first balanced substring starting with opener, or None; linear in len(text)"""
    start = text.find(opener)
    while start != -1:
        span, mismatch = _scan(text, start, opener)
        if span is not None:
            return text[span[0]:span[1] + 1]
        if mismatch is None:
            return None
        start = text.find(opener, mismatch + 1)
    return None


def parse_agent_output(text: str, adapter: TypeAdapter, opener: str = "{") -> ParseResult:
    cleaned = strip_code_fences(text or "")
    try:
        return ParsedOutput(adapter.validate_json(cleaned))
    except ValidationError as first_error:
        candidate = extract_balanced(cleaned, opener)
        if candidate is None:
            return ParseFailure(f"no {opener}-delimited payload in reply ({first_error.error_count()} errors on full parse)")
        try:
            return ParsedOutput(adapter.validate_json(candidate))
        except ValidationError as second_error:
            return ParseFailure(f"extracted payload does not match expected shape: {second_error.errors()[0]['msg']}")


# agent definitions

@dataclass(frozen=True)
class AgentSpec:
    role: AgentRole
    instructions: str
    output: TypeAdapter
    select: Callable[[RawSnapshot], dict]
    fallback: Any
    cap: Optional[int] = None
    opener: str = "{"
    # insight language -> fallback in that language; english otherwise
    localized_fallbacks: dict[str, Any] = field(default_factory=dict)

    def fallback_for(self, language: Optional[str] = None) -> Any:
        """a fresh copy of the fallback, in the insight language when one is defined"""
        language = language or settings.INSIGHTS_LANGUAGE
        return copy.deepcopy(self.localized_fallbacks.get(language, self.fallback))

    def exceeds_cap(self, value: Any) -> bool:
        if self.cap is None:
            return False
        if isinstance(value, list):
            return len(value) > self.cap
        if isinstance(value, ResponseAnalysis):
            return any(
                len(items) > self.cap
                for items in (value.common_patterns, value.key_insights, value.recommended_actions)
            )
        return False


def _slice(*fields: str) -> Callable[[RawSnapshot], dict]:
    def select(snapshot: RawSnapshot) -> dict:
        return snapshot.model_dump(mode="json", by_alias=True, include=set(fields))
    return select


def _everything_but_responses(snapshot: RawSnapshot) -> dict:
    return snapshot.model_dump(mode="json", by_alias=True, exclude={"response_samples"})


EFFECTIVENESS_INSTRUCTIONS = """You are an expert in evaluating the effectiveness of mental health applications.
Your specialty is assessing how applications help users living with anxiety and depression.
Provide an in-depth analysis of how effective the Serenity app is, based on the data.
Return a JSON object with the following properties:
- insight: a string with the main insight about the app's effectiveness
- score: a number between 0 and 100 representing your assessment of the app's overall effectiveness"""

PATTERNS_INSTRUCTIONS = """You are a data scientist specialized in detecting patterns in mental health app data.
Your job is to identify significant patterns in the distribution of users and their anxiety/depression levels.
Return a JSON array of strings, where each string describes one significant pattern you detected.
Limit your answer to at most 6 truly relevant patterns."""

CORRELATIONS_INSTRUCTIONS = """You are a statistician specialized in finding correlations between app usage and mental health outcomes.
Your mission is to find relationships between how users use the Serenity app and their anxiety/depression levels.
Return a JSON array of strings, where each string describes one important correlation you detected.
Limit your answer to at most 6 truly significant correlations."""

TRENDS_INSTRUCTIONS = """You are a trend analyst for digital health applications.
Your specialty is identifying temporal patterns, growth, and likely future trends.
Analyze how usage of the Serenity app has evolved over time.
Return a JSON array of strings, where each string describes one important temporal trend.
Limit your answer to at most 6 truly relevant trends."""

RECOMMENDATIONS_INSTRUCTIONS = """You are a strategy consultant for mental health applications.
Your job is to provide actionable recommendations to improve the Serenity app based on all the available data.
Return a JSON array of strings, where each string is one specific, actionable recommendation.
Limit your answer to at most 6 truly important and effective recommendations."""

RESPONSE_ANALYSIS_INSTRUCTIONS = """You are a psychologist specialized in qualitative analysis of patient responses.
Your goal is to analyze the free-text answers users gave in their anxiety and depression tests.
Look for common patterns, key insights, and recommend actions based on the textual content.
Return a JSON object with the following structure:
{
  "commonPatterns": [array of strings with common patterns detected],
  "keyInsights": [array of strings with key insights],
  "recommendedActions": [array of strings with recommended actions]
}
Limit each array to at most 5 truly significant items."""

_STRING_LIST = TypeAdapter(list[str])

AGENT_SPECS: dict[AgentRole, AgentSpec] = {
    AgentRole.EFFECTIVENESS: AgentSpec(
        role=AgentRole.EFFECTIVENESS,
        instructions=EFFECTIVENESS_INSTRUCTIONS,
        output=TypeAdapter(EffectivenessInsight),
        select=_slice("effectiveness", "correlation_data"),
        fallback=EffectivenessInsight(insight="Unable to analyze effectiveness", score=0),
        localized_fallbacks={"Spanish": EffectivenessInsight(insight="Error al analizar efectividad", score=0)},
    ),
    AgentRole.SIGNIFICANT_PATTERNS: AgentSpec(
        role=AgentRole.SIGNIFICANT_PATTERNS,
        instructions=PATTERNS_INSTRUCTIONS,
        output=_STRING_LIST,
        select=_slice("anxiety_levels", "depression_levels", "age_distribution", "gender_distribution"),
        fallback=["Unable to analyze patterns"],
        localized_fallbacks={"Spanish": ["Error al analizar patrones"]},
        cap=6,
        opener="[",
    ),
    AgentRole.CORRELATIONS: AgentSpec(
        role=AgentRole.CORRELATIONS,
        instructions=CORRELATIONS_INSTRUCTIONS,
        output=_STRING_LIST,
        select=_slice("correlation_data", "chat_analytics", "usage_patterns"),
        fallback=["Unable to analyze correlations"],
        localized_fallbacks={"Spanish": ["Error al analizar correlaciones"]},
        cap=6,
        opener="[",
    ),
    AgentRole.TEMPORAL_TRENDS: AgentSpec(
        role=AgentRole.TEMPORAL_TRENDS,
        instructions=TRENDS_INSTRUCTIONS,
        output=_STRING_LIST,
        select=_slice("monthly_activity", "message_activity"),
        fallback=["Unable to analyze trends"],
        localized_fallbacks={"Spanish": ["Error al analizar tendencias"]},
        cap=6,
        opener="[",
    ),
    AgentRole.RECOMMENDATIONS: AgentSpec(
        role=AgentRole.RECOMMENDATIONS,
        instructions=RECOMMENDATIONS_INSTRUCTIONS,
        output=_STRING_LIST,
        select=_everything_but_responses,
        fallback=["Unable to generate recommendations"],
        localized_fallbacks={"Spanish": ["Error al generar recomendaciones"]},
        cap=6,
        opener="[",
    ),
    AgentRole.RESPONSE_ANALYSIS: AgentSpec(
        role=AgentRole.RESPONSE_ANALYSIS,
        instructions=RESPONSE_ANALYSIS_INSTRUCTIONS,
        output=TypeAdapter(ResponseAnalysis),
        select=_slice("response_samples"),
        fallback=ResponseAnalysis(
            commonPatterns=[],
            keyInsights=["Unable to analyze responses"],
            recommendedActions=[],
        ),
        localized_fallbacks={"Spanish": ResponseAnalysis(
            commonPatterns=[],
            keyInsights=["Error al analizar respuestas"],
            recommendedActions=[],
        )},
        cap=5,
    ),
}


def build_prompt(instructions: str, data: dict, language: Optional[str] = None) -> str:
    """role instructions + serialized input slice + the shared analysis brief"""
    language = language or settings.INSIGHTS_LANGUAGE
    return f"""{instructions}

Data available for analysis:
{json.dumps(data, indent=2, ensure_ascii=False)}

Your task is:
1. Analyze this data in depth as an expert in mental health and data analysis
2. Formulate your own questions based on this data
3. Generate meaningful insights that can help improve the Serenity app
4. Organize your answer according to the structure specified

Remember that your goal is to uncover non-obvious patterns and provide actionable recommendations.
Write every string in {language}."""


async def run_agent(backend: GenerationBackend, spec: AgentSpec, data: dict) -> Any:
    """run one agent and return its parsed insight.

    raises GenerationBackendError if the backend fails and AgentOutputError
    if the reply cannot be parsed into the role's shape.
    """
    logger.info(f"Running insight agent: {spec.role.value}")
    text = await backend.generate(build_prompt(spec.instructions, data))

    result = parse_agent_output(text, spec.output, spec.opener)
    if isinstance(result, ParseFailure):
        logger.error(f"Agent {spec.role.value} returned unparseable output: {result.reason}")
        raise AgentOutputError(spec.role.value, result.reason)

    if spec.exceeds_cap(result.value):
        logger.warning(f"Agent {spec.role.value} returned more items than the requested {spec.cap}")
    return result.value
