"""
Request Rule Manager: runs an ordered subset of registered rules against a request.
"""
import logging
from collections.abc import Iterable
from typing import Any

from oidc_provider.exceptions import LogicFault
from oidc_provider.request import ServerRequest
from oidc_provider.result_bag import Result, ResultBag
from oidc_provider.rules import AbstractRule


class RequestRulesManager:
    def __init__(self, rules: Iterable[AbstractRule] = (), logger: logging.Logger | None = None):
        self._rules: dict[str, AbstractRule] = {}
        self._result_bag = ResultBag()
        self._data: dict[str, Any] = {}
        self._logger = logger or logging.getLogger(__name__)
        for rule in rules:
            self.add(rule)

    def add(self, rule: AbstractRule) -> None:
        self._rules[rule.get_key()] = rule

    def check(
        self,
        request: ServerRequest,
        rule_keys: Iterable[str],
        use_fragment_in_http_error_responses: bool = False,
        allowed_server_request_methods: Iterable[str] = ("GET",),
    ) -> ResultBag:
        """
        Run rules in the given order. The first rule that raises stops the run.
        Unknown rule keys are a configuration fault, not a protocol error.
        """
        allowed_methods = tuple(allowed_server_request_methods)
        for key in rule_keys:
            rule = self._rules.get(key)
            if rule is None:
                raise LogicFault(f"Rule for key {key} not defined.")
            result = rule.check_rule(
                request,
                self._result_bag,
                self._logger,
                self._data,
                use_fragment_in_http_error_responses,
                allowed_methods,
            )
            if result is not None:
                self._result_bag.add(result)
        return self._result_bag

    def predefine_result(self, result: Result) -> None:
        self._result_bag.add(result)

    def predefine_result_bag(self, result_bag: ResultBag) -> None:
        self._result_bag = result_bag

    def set_data(self, key: str, value: Any) -> None:
        self._data[key] = value

    def get_data(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)
