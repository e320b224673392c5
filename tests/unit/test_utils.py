# Copyright 2024 Canonical Ltd.
# See LICENSE file for licensing details.

"""Tests for utils.py hashing and helper functions."""

import pytest

from models import (
    Action,
    AuthorizationPolicyResource,
    AuthorizationPolicySpec,
    AuthRule,
    Condition,
    From,
    Metadata,
    Operation,
    Source,
    To,
    WorkloadSelector,
)
from utils import (
    HASH_LABEL_NAME,
    INDEX_LABEL_NAME,
    OWNER_LABEL,
    add_hashing_labels,
    compute_hash,
    get_authorization_policy_hash,
    get_gateway_domain,
    get_host_with_domain,
    get_owner_labels,
    is_short_host_name,
)
from helpers import make_api_rule, make_rule


def make_policy(when=None, principals=None, methods=None, namespace="default"):
    return AuthorizationPolicyResource(
        metadata=Metadata(generateName="test-", namespace=namespace, labels={"keep": "me"}),
        spec=AuthorizationPolicySpec(
            action=Action.allow,
            selector=WorkloadSelector(matchLabels={"app": "httpbin", "version": "v1"}),
            rules=[
                AuthRule(
                    to=[To(operation=Operation(methods=methods or ["GET", "POST"], paths=["/a"]))],
                    from_=[From(source=Source(principals=principals or ["p1"]))],
                    when=when,
                )
            ],
        ),
    )


def test_compute_hash_format():
    selector = WorkloadSelector(matchLabels={"app": "httpbin"})
    to = [To(operation=Operation(paths=["/headers"]))]

    value = compute_hash("my-namespace", selector, to)

    namespace, selector_hash, to_hash = value.split(".")
    assert namespace == "my-namespace"
    assert len(selector_hash) == 10
    assert len(to_hash) == 10


def test_compute_hash_is_order_independent():
    first = compute_hash(
        "default",
        WorkloadSelector(matchLabels={"app": "httpbin", "version": "v1"}),
        [To(operation=Operation(methods=["GET", "POST"], paths=["/a"]))],
    )
    second = compute_hash(
        "default",
        WorkloadSelector(matchLabels={"version": "v1", "app": "httpbin"}),
        [To(operation=Operation(methods=["POST", "GET"], paths=["/a"]))],
    )

    assert first == second


def test_compute_hash_changes_with_operation():
    selector = WorkloadSelector(matchLabels={"app": "httpbin"})

    assert compute_hash("default", selector, [To(operation=Operation(paths=["/a"]))]) != (
        compute_hash("default", selector, [To(operation=Operation(paths=["/b"]))])
    )


def test_compute_hash_without_selector():
    value = compute_hash("default", None, [To(operation=Operation(paths=["/a"]))])

    assert value.startswith("default.")


def test_compute_hash_fits_label_value_limit():
    value = compute_hash("n" * 63, None, [To(operation=Operation(paths=["/a"]))])

    assert len(value) <= 63
    assert value.split(".")[0] == "n" * 41


def test_policy_hash_ignores_sources_and_conditions():
    plain = make_policy()
    restricted = make_policy(
        when=[Condition(key="request.auth.claims[aud]", values=["aud1"])],
        principals=["other"],
    )

    assert get_authorization_policy_hash(plain) == get_authorization_policy_hash(restricted)


def test_policy_hash_differs_per_namespace():
    assert get_authorization_policy_hash(make_policy()) != get_authorization_policy_hash(
        make_policy(namespace="other")
    )


def test_add_hashing_labels():
    policy = make_policy()

    add_hashing_labels(policy, 2)

    assert policy.metadata.labels[INDEX_LABEL_NAME] == "2"
    assert policy.metadata.labels[HASH_LABEL_NAME] == get_authorization_policy_hash(policy)
    assert policy.metadata.labels["keep"] == "me"


def test_get_owner_labels():
    api_rule = make_api_rule([make_rule()], name="httpbin", namespace="apps")

    assert get_owner_labels(api_rule) == {OWNER_LABEL: "httpbin.apps"}


@pytest.mark.parametrize(
    "host, expected",
    [
        ("httpbin", True),
        ("httpbin.example.com", False),
    ],
)
def test_is_short_host_name(host, expected):
    assert is_short_host_name(host) is expected


def test_get_host_with_domain():
    assert get_host_with_domain("httpbin", "example.com") == "httpbin.example.com"


@pytest.mark.parametrize(
    "gateway, expected",
    [
        (None, ""),
        ({"spec": {"servers": []}}, ""),
        ({"spec": {"servers": [{"hosts": []}, {"hosts": ["*.local.kyma.dev"]}]}}, "local.kyma.dev"),
        ({"spec": {"servers": [{"hosts": ["example.com", "other.com"]}]}}, "example.com"),
    ],
)
def test_get_gateway_domain(gateway, expected):
    assert get_gateway_domain(gateway) == expected
