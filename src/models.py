#!/usr/bin/env python3

# Copyright 2024 Canonical Ltd.
# See LICENSE file for licensing details.
"""This module defines Pydantic schemas for the APIRule input and the Istio security resources it compiles to."""
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


# Global metadata schema
class Metadata(BaseModel):
    """Global metadata schema for Kubernetes resources."""

    name: Optional[str] = None
    generateName: Optional[str] = None  # noqa: N815
    namespace: str
    labels: Optional[Dict[str, str]] = None
    annotations: Optional[Dict[str, str]] = None


# APIRule schema
class APIRuleMetadata(BaseModel):
    """Metadata of the APIRule being reconciled."""

    name: str
    namespace: str


class Service(BaseModel):
    """Service defines the workload exposed by an APIRule or one of its rules."""

    name: Optional[str] = None
    namespace: Optional[str] = None
    port: Optional[int] = None


class JwtHeader(BaseModel):
    """JwtHeader defines the header a JWT is extracted from."""

    name: str
    prefix: Optional[str] = None


class JwtAuthentication(BaseModel):
    """JwtAuthentication defines a trusted issuer and how to locate its tokens."""

    issuer: str
    jwksUri: str  # noqa: N815
    fromHeaders: Optional[List[JwtHeader]] = Field(default=None, max_length=1)  # noqa: N815
    fromParams: Optional[List[str]] = Field(default=None, max_length=1)  # noqa: N815

    @model_validator(mode="after")
    def validate_single_extractor(self):
        """Validate that a token is extracted either from a header or from a parameter."""
        if self.fromHeaders and self.fromParams:
            raise ValueError("Only one of fromHeaders and fromParams can be set")
        return self


class JwtAuthorization(BaseModel):
    """JwtAuthorization defines the claims a token must carry."""

    requiredScopes: List[str] = []  # noqa: N815
    audiences: List[str] = []


class JwtConfig(BaseModel):
    """JwtConfig groups the authentications and authorizations of a rule."""

    authentications: List[JwtAuthentication] = []
    authorizations: List[JwtAuthorization] = []


class ExtAuth(BaseModel):
    """ExtAuth delegates the access decision to external authorizers."""

    authorizers: List[str] = Field(min_length=1)
    restrictions: Optional[JwtConfig] = None


class Rule(BaseModel):
    """Rule defines the access configuration of a single path."""

    path: str
    methods: List[str] = []
    service: Optional[Service] = None
    noAuth: Optional[bool] = None  # noqa: N815
    jwt: Optional[JwtConfig] = None
    extAuth: Optional[ExtAuth] = None  # noqa: N815

    @model_validator(mode="after")
    def validate_single_access_mode(self):
        """Validate that exactly one of noAuth, jwt and extAuth is configured."""
        modes = [self.noAuth is True, self.jwt is not None, self.extAuth is not None]
        if modes.count(True) != 1:
            raise ValueError("Exactly one of noAuth, jwt and extAuth must be set")
        return self


class APIRuleSpec(BaseModel):
    """APIRuleSpec defines the exposed hosts, the default service and the access rules."""

    hosts: List[str] = []
    service: Optional[Service] = None
    gateway: Optional[str] = None
    rules: List[Rule]


class APIRule(BaseModel):
    """APIRule defines the structure of an APIRule Kubernetes resource."""

    metadata: APIRuleMetadata
    spec: APIRuleSpec


# Authorization Policy schema


class Action(str, Enum):
    """Action is a type that represents the action to take when a rule matches."""

    allow = "ALLOW"
    custom = "CUSTOM"


class PolicyTargetReference(BaseModel):
    """PolicyTargetReference defines the target of the policy."""

    group: str
    kind: str
    name: str
    namespace: Optional[str] = None


class WorkloadSelector(BaseModel):
    """WorkloadSelector defines the selector for the policy."""

    matchLabels: Dict[str, str]  # noqa: N815


class Source(BaseModel):
    """Source defines the source of the policy."""

    principals: Optional[List[str]] = None
    requestPrincipals: Optional[List[str]] = None  # noqa: N815


class From(BaseModel):
    """From defines the source of the policy."""

    source: Source


class Operation(BaseModel):
    """Operation defines the operation of the To model."""

    hosts: Optional[List[str]] = None
    methods: Optional[List[str]] = None
    paths: Optional[List[str]] = None


class To(BaseModel):
    """To defines the destination of the policy."""

    operation: Optional[Operation] = None


class Condition(BaseModel):
    """Condition defines an additional request attribute that must match."""

    key: str
    values: List[str]


class Provider(BaseModel):
    """Specifies the name of the extension provider, must be used only with CUSTOM action."""

    name: Optional[str] = None


class AuthRule(BaseModel):
    """AuthRule defines a policy rule."""

    from_: Optional[List[From]] = Field(default=None, alias="from")
    to: Optional[List[To]] = None
    when: Optional[List[Condition]] = None
    # Allows us to populate with `Rule(from_=[From()])`.  Without this, we can only use they alias `from`, which is
    # protected, meaning we could only build rules from a dict like `Rule(**{"from": [From()]})`.
    model_config = ConfigDict(populate_by_name=True)


class AuthorizationPolicySpec(BaseModel):
    """AuthorizationPolicySpec defines the spec of an Istio AuthorizationPolicy Kubernetes resource."""

    action: Action
    rules: List[AuthRule]
    targetRefs: Optional[List[PolicyTargetReference]] = Field(default=None)  # noqa: N815
    selector: Optional[WorkloadSelector] = Field(default=None)
    provider: Optional[Provider] = Field(default=None)

    @model_validator(mode="after")
    def validate_target_refs_selector(self):
        """Validate that at most one of targetRefs and selector is defined."""
        if self.targetRefs is not None and self.selector is not None:
            raise ValueError("At most one of targetRefs and selector can be set")
        return self

    @model_validator(mode="after")
    def validate_provider_action(self):
        """Validate that CUSTOM action must be set when specifying extension providers."""
        if self.provider is not None and self.action is not Action.custom:
            raise ValueError("CUSTOM action must be set when specifying extension providers")
        return self


class AuthorizationPolicyResource(BaseModel):
    """AuthorizationPolicyResource defines the structure of an Istio AuthorizationPolicy Kubernetes resource."""

    metadata: Metadata
    spec: AuthorizationPolicySpec


# Request Authentication schema


class JWTHeader(BaseModel):
    """JWTHeader defines a header Istio reads the token from."""

    name: str
    prefix: Optional[str] = None


class JWTRule(BaseModel):
    """JWTRule defines how Istio validates tokens of one issuer."""

    issuer: str
    jwksUri: str  # noqa: N815
    forwardOriginalToken: bool = True  # noqa: N815
    fromHeaders: Optional[List[JWTHeader]] = None  # noqa: N815
    fromParams: Optional[List[str]] = None  # noqa: N815


class RequestAuthenticationSpec(BaseModel):
    """RequestAuthenticationSpec defines the spec of an Istio RequestAuthentication Kubernetes resource."""

    selector: Optional[WorkloadSelector] = Field(default=None)
    jwtRules: List[JWTRule]  # noqa: N815


class RequestAuthenticationResource(BaseModel):
    """RequestAuthenticationResource defines the structure of an Istio RequestAuthentication Kubernetes resource."""

    metadata: Metadata
    spec: RequestAuthenticationSpec
