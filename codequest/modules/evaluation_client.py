"""
Client for the external text-generation service that grades code.

The client never raises past evaluate(): transport failures, bad
statuses and unreadable model output all come back as a degraded
GradingResult with a score of zero and a user-facing message.
"""

import json
import logging
import math
import re
import time
from typing import Any, Callable, Optional, Sequence

import httpx
from langfuse import Langfuse
from pydantic import BaseModel, Field

from common.config import Settings
from modules import code_guard
from modules.errors import EvaluationParseError, EvaluationUnavailableError
from modules.grading_prompt import build_grading_prompt

logger = logging.getLogger(__name__)

PASSING_SCORE = 70
GENERATE_PATH = "/api/generate"

UNAVAILABLE_FEEDBACK = (
    "AI evaluation failed. Please ensure the evaluation service is "
    "running and try again."
)
PARSE_FAILURE_FEEDBACK = "Failed to parse evaluation results."
DEFAULT_FEEDBACK = "Code evaluation completed."

_TRUE_STRINGS = {"true", "yes", "1", "pass", "passed"}


class ScoreBreakdown(BaseModel):
    """Rubric sub-scores, each clamped to 0-100."""

    correctness: int = Field(default=0, ge=0, le=100)
    code_quality: int = Field(default=0, ge=0, le=100)
    efficiency: int = Field(default=0, ge=0, le=100)
    style: int = Field(default=0, ge=0, le=100)


class TestCaseResult(BaseModel):
    """Model's verdict on one test case."""

    __test__ = False  # not a pytest test class

    input: str
    expected: str
    passed: bool
    explanation: str = ""


class GradingResult(BaseModel):
    """Structured outcome of grading one submission."""

    score: int = Field(..., ge=0, le=100)
    passed: bool
    feedback: str
    analysis: ScoreBreakdown = Field(default_factory=ScoreBreakdown)
    suggestions: list[str] = Field(default_factory=list)
    test_results: list[TestCaseResult] = Field(default_factory=list)
    degraded: bool = Field(
        default=False,
        description="True when no model verdict could be obtained"
    )

    @classmethod
    def failure(cls, message: str, degraded: bool = True) -> "GradingResult":
        """Zero-score result carrying an explanatory message."""
        return cls(score=0, passed=False, feedback=message, degraded=degraded)

    @classmethod
    def rejected(cls, violations: Sequence[str]) -> "GradingResult":
        """Result for code the guard refused to send to the model."""
        return cls.failure(
            "Submission rejected: " + ". ".join(violations),
            degraded=False
        )


def clamp_score(value: Any) -> int:
    """
    Coerce a model-supplied score into an integer in [0, 100].

    Non-numeric values and NaN map to 0; halves round up.
    """
    if isinstance(value, bool):
        value = int(value)
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    if math.isnan(number):
        return 0
    number = min(100.0, max(0.0, number))
    return math.floor(number + 0.5)


def compute_overall_score(
    correctness: int,
    code_quality: int,
    efficiency: int,
    style: int
) -> int:
    """round(0.5c + 0.2q + 0.2e + 0.1s), computed in tenths to stay exact."""
    tenths = 5 * correctness + 2 * code_quality + 2 * efficiency + style
    return (tenths + 5) // 10


def extract_json_object(text: str) -> dict[str, Any]:
    """
    Return the first brace-delimited JSON object found in ``text``.

    Raises:
        EvaluationParseError: If no object is present or none decodes
    """
    decoder = json.JSONDecoder()
    starts = [match.start() for match in re.finditer(r"\{", text)]
    if not starts:
        raise EvaluationParseError("No JSON found in response")

    for start in starts:
        try:
            candidate, _ = decoder.raw_decode(text, start)
        except json.JSONDecodeError:
            continue
        if isinstance(candidate, dict):
            return candidate

    raise EvaluationParseError("Malformed JSON in response")


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


def _coerce_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in _TRUE_STRINGS
    return bool(value)


def _reconcile_test_results(
    raw_results: Any,
    test_cases: Sequence[dict[str, Any]]
) -> list[TestCaseResult]:
    if not isinstance(raw_results, list):
        return []

    results = []
    for index, item in enumerate(raw_results):
        if not isinstance(item, dict):
            item = {}
        case = test_cases[index] if index < len(test_cases) else {}
        results.append(
            TestCaseResult(
                input=_text(item.get("input")) or _text(case.get("input")),
                expected=(
                    _text(item.get("expected"))
                    or _text(case.get("expected_output"))
                ),
                passed=_coerce_bool(item.get("passed")),
                explanation=_text(item.get("explanation")),
            )
        )
    return results


def parse_grading_response(
    response_text: str,
    test_cases: Sequence[dict[str, Any]]
) -> GradingResult:
    """
    Turn raw model output into a GradingResult.

    The overall score is recomputed locally; the model's own
    ``overallScore`` is ignored.

    Args:
        response_text: Text returned by the model
        test_cases: Challenge test cases, used to backfill results

    Returns:
        GradingResult: Parsed, clamped result

    Raises:
        EvaluationParseError: If the text holds no usable JSON object
    """
    parsed = extract_json_object(response_text)

    analysis = ScoreBreakdown(
        correctness=clamp_score(parsed.get("correctness")),
        code_quality=clamp_score(parsed.get("codeQuality")),
        efficiency=clamp_score(parsed.get("efficiency")),
        style=clamp_score(parsed.get("style")),
    )
    score = compute_overall_score(
        analysis.correctness,
        analysis.code_quality,
        analysis.efficiency,
        analysis.style,
    )

    suggestions = parsed.get("suggestions")
    if isinstance(suggestions, list):
        suggestions = [_text(s) for s in suggestions]
    else:
        suggestions = []

    return GradingResult(
        score=score,
        passed=score >= PASSING_SCORE,
        feedback=_text(parsed.get("feedback")) or DEFAULT_FEEDBACK,
        analysis=analysis,
        suggestions=suggestions,
        test_results=_reconcile_test_results(
            parsed.get("testResults"),
            test_cases
        ),
    )


class EvaluationClient:
    """
    Grades code through an Ollama-compatible ``/api/generate`` endpoint.

    Args:
        settings: Application settings (backend URL, model, timeout)
        transport: Optional httpx transport, used to stub the backend
        clock: Monotonic time source for the overall deadline
    """

    def __init__(
        self,
        settings: Settings,
        transport: Optional[httpx.BaseTransport] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        self.settings = settings
        self._transport = transport
        self._clock = clock
        self._langfuse: Optional[Langfuse] = None

        logger.info(
            f"Evaluation backend configured at "
            f"{settings.evaluation_base_url} with model "
            f"{settings.evaluation_model}"
        )

    def _http_client(self) -> httpx.Client:
        return httpx.Client(
            base_url=self.settings.evaluation_base_url,
            timeout=httpx.Timeout(self.settings.evaluation_timeout_seconds),
            transport=self._transport,
        )

    def _get_langfuse(self) -> Optional[Langfuse]:
        if not self.settings.langfuse_enabled:
            return None
        if self._langfuse is None:
            self._langfuse = Langfuse(
                secret_key=self.settings.langfuse_secret_key,
                public_key=self.settings.langfuse_public_key,
                host=self.settings.langfuse_base_url
            )
        return self._langfuse

    def _trace_generation(self, prompt: str, output: str) -> None:
        langfuse = self._get_langfuse()
        if langfuse is None:
            return
        try:
            trace = langfuse.trace(name="code_grading")
            trace.generation(
                name="grading",
                input=prompt,
                output=output,
                model=self.settings.evaluation_model
            )
        except Exception as e:
            logger.warning(f"Langfuse tracing failed: {e}")

    def generate(self, prompt: str) -> str:
        """
        Send one non-streaming generation request.

        The whole exchange, including reading the body, is bounded by
        ``evaluation_timeout_seconds``; httpx timeouts only bound each
        connect, read and write step.

        Raises:
            EvaluationUnavailableError: On transport errors, timeouts,
                non-2xx statuses or an empty ``response`` field
        """
        payload = {
            "model": self.settings.evaluation_model,
            "prompt": prompt,
            "stream": False,
            "options": {
                "temperature": self.settings.evaluation_temperature,
            },
        }

        timeout = self.settings.evaluation_timeout_seconds
        deadline = self._clock() + timeout
        try:
            with self._http_client() as client:
                with client.stream(
                    "POST",
                    GENERATE_PATH,
                    json=payload
                ) as response:
                    body = bytearray()
                    for chunk in response.iter_bytes():
                        body.extend(chunk)
                        if self._clock() > deadline:
                            raise EvaluationUnavailableError(
                                f"Evaluation backend exceeded the "
                                f"{timeout:g}s deadline"
                            )
        except httpx.TimeoutException as e:
            raise EvaluationUnavailableError(
                f"Evaluation backend timed out: {e}"
            ) from e
        except httpx.HTTPError as e:
            raise EvaluationUnavailableError(
                f"Evaluation backend unreachable: {e}"
            ) from e

        if not response.is_success:
            raise EvaluationUnavailableError(
                f"Evaluation backend error: {response.status_code}"
            )

        try:
            data = json.loads(bytes(body))
        except ValueError as e:
            raise EvaluationUnavailableError(
                "Evaluation backend returned a non-JSON body"
            ) from e

        text = data.get("response") if isinstance(data, dict) else None
        if not isinstance(text, str) or not text.strip():
            raise EvaluationUnavailableError(
                "Empty response from evaluation backend"
            )
        return text

    def evaluate(
        self,
        code: str,
        problem_statement: str,
        evaluation_instructions: str,
        test_cases: Sequence[dict[str, Any]]
    ) -> GradingResult:
        """
        Grade code against a challenge.

        Args:
            code: Sanitized submission code
            problem_statement: Challenge problem statement
            evaluation_instructions: Challenge-specific grading notes
            test_cases: Challenge test cases

        Returns:
            GradingResult: Always well-formed; degraded on failure
        """
        report = code_guard.validate(code)
        if not report.ok:
            logger.warning(
                f"Refusing to grade code with violations: "
                f"{report.violations}"
            )
            return GradingResult.rejected(report.violations)

        prompt = build_grading_prompt(
            code_guard.sanitize(code),
            problem_statement,
            evaluation_instructions,
            test_cases
        )

        try:
            response_text = self.generate(prompt)
            self._trace_generation(prompt, response_text)
            result = parse_grading_response(response_text, test_cases)
        except EvaluationUnavailableError as e:
            logger.error(f"AI evaluation failed: {e}")
            return GradingResult.failure(UNAVAILABLE_FEEDBACK)
        except EvaluationParseError as e:
            logger.error(f"Failed to parse AI response: {e}")
            return GradingResult.failure(PARSE_FAILURE_FEEDBACK)
        except Exception as e:
            logger.error(f"Unexpected evaluation failure: {e}", exc_info=True)
            return GradingResult.failure(UNAVAILABLE_FEEDBACK)

        logger.info(
            f"Graded submission code: score={result.score} "
            f"passed={result.passed}"
        )
        return result
