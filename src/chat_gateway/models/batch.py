"""
Result containers for batch and comparison runs.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Dict, Iterator, Optional

from ..core.errors import GatewayError
from .response import CompletionResult


@dataclass(frozen=True)
class BatchItemResult:
    """Outcome of one call in a batch: a result or the error it raised."""
    key: str
    result: Optional[CompletionResult] = None
    error: Optional[GatewayError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class ComparisonResult(Mapping):
    """
    Model name to CompletionResult for the models that succeeded.

    Failed models are not keys of the mapping; their errors are kept in
    `errors` so callers can report them.
    """

    def __init__(
        self,
        results: Dict[str, CompletionResult],
        errors: Optional[Dict[str, GatewayError]] = None,
    ):
        self._results = dict(results)
        self.errors: Dict[str, GatewayError] = dict(errors or {})

    def __getitem__(self, model: str) -> CompletionResult:
        return self._results[model]

    def __iter__(self) -> Iterator[str]:
        return iter(self._results)

    def __len__(self) -> int:
        return len(self._results)

    def __repr__(self) -> str:
        return f"ComparisonResult(ok={sorted(self._results)}, failed={sorted(self.errors)})"
