from .client import (
    ExecutionResult,
    HttpJudgeClient,
    JudgeService,
    CaseResult,
    compile_failure,
)

__all__ = [
    "ExecutionResult",
    "HttpJudgeClient",
    "JudgeService",
    "CaseResult",
    "compile_failure",
]
