# Copyright 2024 Canonical Ltd.
# See LICENSE file for licensing details.

import pytest
from pydantic import ValidationError

from models import (
    Action,
    APIRule,
    AuthorizationPolicySpec,
    AuthRule,
    ExtAuth,
    From,
    JwtAuthentication,
    JwtHeader,
    PolicyTargetReference,
    Provider,
    Rule,
    Source,
    WorkloadSelector,
)
from helpers import ISSUER, JWKS_URI, make_jwt


@pytest.mark.parametrize(
    "modes",
    [
        {},
        {"noAuth": False},
        {"noAuth": True, "jwt": make_jwt()},
        {"jwt": make_jwt(), "extAuth": ExtAuth(authorizers=["authz"])},
    ],
)
def test_rule_requires_exactly_one_access_mode(modes):
    with pytest.raises(ValidationError, match="Exactly one of noAuth, jwt and extAuth"):
        Rule(path="/headers", **modes)


def test_jwt_authentication_single_token_location():
    with pytest.raises(ValidationError, match="Only one of fromHeaders and fromParams"):
        JwtAuthentication(
            issuer=ISSUER,
            jwksUri=JWKS_URI,
            fromHeaders=[JwtHeader(name="x-jwt")],
            fromParams=["token"],
        )


def test_jwt_authentication_at_most_one_header():
    with pytest.raises(ValidationError):
        JwtAuthentication(
            issuer=ISSUER,
            jwksUri=JWKS_URI,
            fromHeaders=[JwtHeader(name="a"), JwtHeader(name="b")],
        )


def test_ext_auth_requires_authorizer():
    with pytest.raises(ValidationError):
        ExtAuth(authorizers=[])


def test_api_rule_from_dict():
    api_rule = APIRule.model_validate(
        {
            "metadata": {"name": "httpbin", "namespace": "apps"},
            "spec": {
                "hosts": ["httpbin.example.com"],
                "service": {"name": "httpbin", "port": 8000},
                "gateway": "kyma-system/kyma-gateway",
                "rules": [
                    {"path": "/.*", "methods": ["GET"], "noAuth": True},
                    {
                        "path": "/headers",
                        "jwt": {
                            "authentications": [{"issuer": ISSUER, "jwksUri": JWKS_URI}],
                            "authorizations": [{"audiences": ["httpbin"]}],
                        },
                    },
                ],
            },
        }
    )

    assert api_rule.spec.rules[1].jwt.authorizations[0].requiredScopes == []
    assert api_rule.spec.rules[1].methods == []


def test_auth_rule_from_alias():
    rule = AuthRule(from_=[From(source=Source(principals=["p"]))])

    assert rule.model_dump(by_alias=True, exclude_none=True) == {
        "from": [{"source": {"principals": ["p"]}}]
    }


def test_policy_spec_target_refs_and_selector_are_exclusive():
    with pytest.raises(ValidationError, match="At most one of targetRefs and selector"):
        AuthorizationPolicySpec(
            action=Action.allow,
            rules=[],
            selector=WorkloadSelector(matchLabels={"app": "httpbin"}),
            targetRefs=[PolicyTargetReference(group="g", kind="Gateway", name="gw")],
        )


def test_policy_spec_provider_requires_custom_action():
    with pytest.raises(ValidationError, match="CUSTOM action must be set"):
        AuthorizationPolicySpec(action=Action.allow, rules=[], provider=Provider(name="authz"))
