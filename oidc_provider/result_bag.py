"""
Result Bag: keyed accumulator of facts established by request rules.
"""
from typing import Any

from oidc_provider.exceptions import LogicFault


class Result:
    def __init__(self, key: str, value: Any = None):
        self._key = key
        self._value = value

    @property
    def key(self) -> str:
        return self._key

    @property
    def value(self) -> Any:
        return self._value

    def set_value(self, value: Any) -> None:
        self._value = value

    def __repr__(self) -> str:
        return f"Result(key={self._key!r}, value={self._value!r})"


class ResultBag:
    def __init__(self):
        self._results: dict[str, Result] = {}

    def add(self, result: Result) -> None:
        self._results[result.key] = result

    def get(self, key: str) -> Result | None:
        return self._results.get(key)

    def get_or_fail(self, key: str) -> Result:
        """Result for key; a missing key means a rule ran before its prerequisite."""
        result = self._results.get(key)
        if result is None:
            raise LogicFault(f"Checker error: expected existing result, but none found ({key})")
        return result

    def get_all(self) -> dict[str, Result]:
        return dict(self._results)

    def remove(self, key: str) -> None:
        self._results.pop(key, None)

    def __contains__(self, key: str) -> bool:
        return key in self._results

    def __len__(self) -> int:
        return len(self._results)
