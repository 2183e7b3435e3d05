"""
Tests for the result bag and the request rules manager.
"""
import pytest

from oidc_provider.exceptions import LogicFault, OidcServerError
from oidc_provider.request import ServerRequest
from oidc_provider.result_bag import Result, ResultBag
from oidc_provider.rules import AbstractRule, StateRule
from oidc_provider.rules_manager import RequestRulesManager


class RecordingRule(AbstractRule):
    def __init__(self, key, calls, value="ok"):
        self.key = key
        self.calls = calls
        self.value = value

    def check_rule(self, request, current_result_bag, logger, data, use_fragment_in_http_error_responses=False,
                   allowed_server_request_methods=("GET",)):
        self.calls.append((self.key, sorted(current_result_bag.get_all()), dict(data)))
        if self.value is None:
            return None
        return Result(self.key, self.value)


class FailingRule(AbstractRule):
    key = "failing"

    def check_rule(self, request, current_result_bag, logger, data, use_fragment_in_http_error_responses=False,
                   allowed_server_request_methods=("GET",)):
        raise OidcServerError.invalid_request("failing")


def test_result_bag_get_or_fail_missing_key():
    bag = ResultBag()
    with pytest.raises(LogicFault) as exc_info:
        bag.get_or_fail("client_id")
    assert "client_id" in str(exc_info.value)


def test_result_bag_add_replaces_and_remove():
    bag = ResultBag()
    bag.add(Result("scope", ["openid"]))
    bag.add(Result("scope", ["openid", "email"]))
    assert bag.get_or_fail("scope").value == ["openid", "email"]
    assert len(bag) == 1
    bag.remove("scope")
    assert "scope" not in bag
    assert bag.get("scope") is None


def test_rules_run_in_given_order_and_see_earlier_results():
    calls = []
    manager = RequestRulesManager([RecordingRule("a", calls), RecordingRule("b", calls), RecordingRule("c", calls)])
    bag = manager.check(ServerRequest(), ["c", "a", "b"])
    assert [call[0] for call in calls] == ["c", "a", "b"]
    assert calls[1][1] == ["c"]
    assert calls[2][1] == ["a", "c"]
    assert sorted(bag.get_all()) == ["a", "b", "c"]


def test_rule_returning_none_adds_nothing():
    calls = []
    manager = RequestRulesManager([RecordingRule("optional", calls, value=None)])
    bag = manager.check(ServerRequest(), ["optional"])
    assert "optional" not in bag


def test_unknown_rule_key_is_logic_fault():
    manager = RequestRulesManager([StateRule()])
    with pytest.raises(LogicFault) as exc_info:
        manager.check(ServerRequest(), ["state", "nope"])
    assert str(exc_info.value) == "Rule for key nope not defined."


def test_first_failing_rule_stops_the_run():
    calls = []
    manager = RequestRulesManager([FailingRule(), RecordingRule("after", calls)])
    with pytest.raises(OidcServerError):
        manager.check(ServerRequest(), ["failing", "after"])
    assert calls == []


def test_predefined_result_and_data_are_visible_to_rules():
    calls = []
    manager = RequestRulesManager([RecordingRule("a", calls)])
    manager.predefine_result(Result("client_id", "spa"))
    manager.set_data("default_scope", "openid")
    manager.check(ServerRequest(), ["a"])
    assert calls[0][1] == ["client_id"]
    assert calls[0][2] == {"default_scope": "openid"}
    assert manager.get_data("default_scope") == "openid"


def test_predefine_result_bag_replaces_bag():
    manager = RequestRulesManager([StateRule()])
    bag = ResultBag()
    bag.add(Result("redirect_uri", "http://rp/cb"))
    manager.predefine_result_bag(bag)
    result = manager.check(ServerRequest(query_params={"state": "s1"}), ["state"])
    assert result is bag
    assert result.get_or_fail("state").value == "s1"
    assert result.get_or_fail("redirect_uri").value == "http://rp/cb"
