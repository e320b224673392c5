#!/usr/bin/env python3

# Copyright 2024 Canonical Ltd.
# See LICENSE file for licensing details.

"""Creation and reconciliation of the Istio RequestAuthentications of an APIRule.

RequestAuthentications are not hashed: one object exists per selector, issuer set and
namespace, so that combination is used as the key to compare both states.
"""

import copy
import logging
from typing import Dict, List, Optional

from lightkube.core.client import Client
from lightkube.generic_resource import GenericNamespacedResource
from lightkube.models.meta_v1 import ObjectMeta

from lightkube_helpers import (
    RESOURCE_TYPES,
    KubernetesResourceRepository,
    find_service_namespace,
    get_selector_from_service,
)
from models import (
    APIRule,
    JwtConfig,
    JWTHeader,
    JWTRule,
    Metadata,
    RequestAuthenticationResource,
    RequestAuthenticationSpec,
    Rule,
)
from processing import (
    ObjectChange,
    new_object_create_action,
    new_object_delete_action,
    new_object_update_action,
)
from utils import get_module_labels, get_owner_labels

logger = logging.getLogger(__name__)


def _jwt_config(rule: Rule) -> Optional[JwtConfig]:
    if rule.jwt is not None:
        return rule.jwt
    if rule.extAuth is not None:
        return rule.extAuth.restrictions
    return None


def _jwt_rules(jwt: JwtConfig) -> List[JWTRule]:
    jwt_rules = []
    for authentication in jwt.authentications:
        headers = None
        if authentication.fromHeaders:
            headers = [JWTHeader(name=h.name, prefix=h.prefix) for h in authentication.fromHeaders]
        jwt_rules.append(
            JWTRule(
                issuer=authentication.issuer,
                jwksUri=authentication.jwksUri,
                # Forwarding the token keeps the behaviour upstream services relied on before.
                forwardOriginalToken=True,
                fromHeaders=headers,
                fromParams=authentication.fromParams or None,
            )
        )
    return jwt_rules


def get_request_authentication_key(ra: GenericNamespacedResource) -> str:
    """Return the key identifying a RequestAuthentication in both states."""
    spec = ra.get("spec") or {}
    match_labels = (spec.get("selector") or {}).get("matchLabels") or {}
    selector_key = ",".join(f"{k}={v}" for k, v in sorted(match_labels.items()))

    jwt_rules_key = "".join(
        f"{jwt_rule['issuer']}:{jwt_rule['jwksUri']}" for jwt_rule in spec.get("jwtRules") or []
    )

    namespace = ra.metadata.namespace if ra.metadata and ra.metadata.namespace else "default"

    # A changed namespace results in a new key, so the object is recreated.
    return f"{selector_key}:{jwt_rules_key}:{namespace}"


class RequestAuthenticationCreator:
    """Creates the RequestAuthentications using the configuration of an APIRule."""

    def __init__(self, client: Client):
        self.client = client

    def create(self, api_rule: APIRule) -> Dict[str, GenericNamespacedResource]:
        """Return the desired RequestAuthentications of the APIRule by key."""
        request_authentications: Dict[str, GenericNamespacedResource] = {}
        for rule in api_rule.spec.rules:
            jwt = _jwt_config(rule)
            if jwt is None:
                continue
            ra = self._generate_request_authentication(api_rule, rule, jwt)
            request_authentications[get_request_authentication_key(ra)] = ra
        return request_authentications

    def _generate_request_authentication(
        self, api_rule: APIRule, rule: Rule, jwt: JwtConfig
    ) -> GenericNamespacedResource:
        pod_selector = get_selector_from_service(self.client, api_rule, rule)
        request_authentication = RequestAuthenticationResource(
            metadata=Metadata(
                generateName=f"{api_rule.metadata.name}-",
                namespace=find_service_namespace(api_rule, rule),
                labels={**get_owner_labels(api_rule), **get_module_labels()},
            ),
            spec=RequestAuthenticationSpec(
                selector=pod_selector.selector,
                jwtRules=_jwt_rules(jwt),
            ),
        )
        ra_resource = RESOURCE_TYPES["RequestAuthentication"]
        return ra_resource(
            metadata=ObjectMeta.from_dict(
                request_authentication.metadata.model_dump(exclude_none=True)
            ),
            spec=request_authentication.spec.model_dump(exclude_none=True),
        )


class RequestAuthenticationProcessor:
    """Handles the Istio RequestAuthentications in the reconciliation of an APIRule."""

    def __init__(self, client: Client, repository: KubernetesResourceRepository):
        self.creator = RequestAuthenticationCreator(client)
        self.repository = repository

    def evaluate_reconciliation(self, api_rule: APIRule) -> List[ObjectChange]:
        """Return the changes needed to bring the RequestAuthentications of the APIRule to the desired state."""
        desired = self.creator.create(api_rule)
        actual = {
            get_request_authentication_key(ra): ra
            for ra in self.repository.get_all(RESOURCE_TYPES["RequestAuthentication"], api_rule)
        }

        object_changes: List[ObjectChange] = []
        for key, ra in desired.items():
            if key in actual:
                actual[key]["spec"] = copy.deepcopy(ra["spec"])
                object_changes.append(new_object_update_action(actual[key]))
            else:
                object_changes.append(new_object_create_action(ra))

        for key, ra in actual.items():
            if key not in desired:
                object_changes.append(new_object_delete_action(ra))

        logger.info(
            f"Request authentication changes that will be applied: {len(object_changes)}"
        )
        return object_changes
