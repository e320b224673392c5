# Copyright 2024 Canonical Ltd.
# See LICENSE file for licensing details.

"""Builders shared by the unit tests."""

import copy
from typing import Dict, List, Optional
from unittest.mock import MagicMock

from httpx import HTTPStatusError
from lightkube.models.core_v1 import ServiceSpec
from lightkube.models.meta_v1 import ObjectMeta
from lightkube.resources.core_v1 import Service as K8sService

from models import (
    APIRule,
    APIRuleMetadata,
    APIRuleSpec,
    ExtAuth,
    JwtAuthentication,
    JwtAuthorization,
    JwtConfig,
    Rule,
    Service,
)

SERVICE_NAME = "example-service"
API_RULE_NAME = "test-apirule"
API_RULE_NAMESPACE = "default"
ISSUER = "https://oauth2.example.com/"
JWKS_URI = "https://oauth2.example.com/.well-known/jwks.json"


def make_service(
    name: str = SERVICE_NAME,
    namespace: str = API_RULE_NAMESPACE,
    selector: Optional[Dict[str, str]] = None,
) -> K8sService:
    return K8sService(
        metadata=ObjectMeta(name=name, namespace=namespace),
        spec=ServiceSpec(selector={"app": name} if selector is None else selector),
    )


def fake_client(services: Optional[List[K8sService]] = None, existing: Optional[List] = None):
    """Return a mocked lightkube client serving the given services and listing the given objects."""
    services = [make_service()] if services is None else services
    existing = existing or []
    by_key = {(s.metadata.namespace, s.metadata.name): s for s in services}

    def get(resource, name, namespace):
        try:
            return by_key[(namespace, name)]
        except KeyError:
            raise HTTPStatusError(
                response=MagicMock(status_code=404), message="not found", request=MagicMock()
            )

    def list_(resource, **kwargs):
        return [obj for obj in existing if isinstance(obj, resource)]

    client = MagicMock()
    client.get.side_effect = get
    client.list.side_effect = list_
    return client


def make_jwt(
    authorizations: Optional[List[JwtAuthorization]] = None, issuer: str = ISSUER
) -> JwtConfig:
    return JwtConfig(
        authentications=[JwtAuthentication(issuer=issuer, jwksUri=JWKS_URI)],
        authorizations=authorizations or [],
    )


def make_rule(
    path: str = "/headers",
    methods: Optional[List[str]] = None,
    no_auth: Optional[bool] = None,
    jwt: Optional[JwtConfig] = None,
    ext_auth: Optional[ExtAuth] = None,
    service: Optional[Service] = None,
) -> Rule:
    if no_auth is None and jwt is None and ext_auth is None:
        no_auth = True
    return Rule(
        path=path,
        methods=methods if methods is not None else ["GET"],
        noAuth=no_auth,
        jwt=jwt,
        extAuth=ext_auth,
        service=service,
    )


def make_api_rule(
    rules: List[Rule],
    hosts: Optional[List[str]] = None,
    service: Optional[Service] = None,
    gateway: Optional[str] = None,
    name: str = API_RULE_NAME,
    namespace: str = API_RULE_NAMESPACE,
) -> APIRule:
    return APIRule(
        metadata=APIRuleMetadata(name=name, namespace=namespace),
        spec=APIRuleSpec(
            hosts=["example-host.example.com"] if hosts is None else hosts,
            service=service if service is not None else Service(name=SERVICE_NAME, port=8080),
            gateway=gateway,
            rules=rules,
        ),
    )


def as_cluster_object(obj, name: str, resource_version: str = "1"):
    """Return a copy of a generated object as the API server would have stored it."""
    stored = copy.deepcopy(obj)
    stored.metadata.name = name
    stored.metadata.generateName = None
    stored.metadata.resourceVersion = resource_version
    stored.metadata.annotations = {"kubectl.kubernetes.io/last-applied-configuration": "{}"}
    return stored


def paths_of(obj) -> List[str]:
    return obj["spec"]["rules"][0]["to"][0]["operation"]["paths"]
