import logging
from dataclasses import dataclass, field
from typing import Any, Protocol, Sequence

import httpx

logger = logging.getLogger(__name__)

TIMEOUT_EXIT_CODE = 124


@dataclass
class CaseResult:
    passed: bool
    expected_output: Any = None
    actual_output: str | None = None
    exit_code: int = 0
    stderr: str = ""
    execution_time: float = 0.0
    error: str | None = None

    def as_dict(self) -> dict:
        return {
            "passed": self.passed,
            "expected_output": self.expected_output,
            "actual_output": self.actual_output,
            "exit_code": self.exit_code,
            "stderr": self.stderr,
            "execution_time": self.execution_time,
            "error": self.error,
        }


@dataclass
class ExecutionResult:
    is_compiled: bool
    test_results: list[CaseResult] = field(default_factory=list)
    error: str | None = None
    judge_unavailable: bool = False

    @property
    def passed_count(self) -> int:
        return sum(1 for result in self.test_results if result.passed)

    @property
    def total(self) -> int:
        return len(self.test_results)

    @property
    def is_passed(self) -> bool:
        return self.is_compiled and self.passed_count == self.total

    @property
    def summary(self) -> dict:
        return {
            "total": self.total,
            "passed": self.passed_count,
            "failed": self.total - self.passed_count,
            "all_passed": self.is_passed,
        }


def compile_failure(
    message: str,
    test_cases: Sequence[dict] = (),
    *,
    judge_unavailable: bool = False,
) -> ExecutionResult:
    """A failed result reported back to the student instead of a server error."""
    return ExecutionResult(
        is_compiled=False,
        error=message,
        judge_unavailable=judge_unavailable,
        test_results=[
            CaseResult(
                passed=False,
                expected_output=case.get("output"),
                exit_code=-1,
                stderr=message,
                error=message,
            )
            for case in test_cases
        ],
    )


class JudgeService(Protocol):
    async def execute(self, code: str, language: str, test_cases: Sequence[dict]) -> ExecutionResult:
        ...


class HttpJudgeClient:
    """Client for the sandbox service that compiles and runs submitted code."""

    def __init__(self, base_url: str, *, timeout: float = 30.0, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    async def execute(self, code: str, language: str, test_cases: Sequence[dict]) -> ExecutionResult:
        payload = {
            "code": code,
            "language": language,
            "test_cases": [{"input": case.get("input"), "output": case.get("output")} for case in test_cases],
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(f"{self.base_url}/execute", json=payload)
                response.raise_for_status()
                body = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Judge request failed: %s", exc)
            return compile_failure("The judge is unavailable. Please try again.", test_cases, judge_unavailable=True)

        return self._parse(body, test_cases)

    @staticmethod
    def _parse(body: dict, test_cases: Sequence[dict]) -> ExecutionResult:
        raw_results = body.get("test_results") or []
        results: list[CaseResult] = []
        for index, case in enumerate(test_cases):
            raw = raw_results[index] if index < len(raw_results) else {}
            results.append(
                CaseResult(
                    passed=bool(raw.get("passed", False)),
                    expected_output=case.get("output"),
                    actual_output=raw.get("actual_output", raw.get("stdout")),
                    exit_code=int(raw.get("exit_code", -1 if not raw else 0)),
                    stderr=raw.get("stderr") or "",
                    execution_time=float(raw.get("execution_time") or 0.0),
                    error=raw.get("error"),
                )
            )
        return ExecutionResult(
            is_compiled=bool(body.get("is_compiled", False)),
            test_results=results,
            error=body.get("error"),
        )
