#!/usr/bin/env python3

# Copyright 2024 Canonical Ltd.
# See LICENSE file for licensing details.

"""Creation and reconciliation of the Istio AuthorizationPolicies of an APIRule."""

import logging
from typing import Any, Dict, List, Optional

from lightkube.core.client import Client
from lightkube.generic_resource import GenericNamespacedResource
from lightkube.models.meta_v1 import ObjectMeta

from hashbasedstate import Actual, AuthorizationPolicyHashable, Desired, get_changes
from lightkube_helpers import (
    RESOURCE_TYPES,
    KubernetesResourceRepository,
    find_service_namespace,
    get_selector_from_service,
)
from models import (
    Action,
    APIRule,
    AuthorizationPolicyResource,
    AuthorizationPolicySpec,
    AuthRule,
    Condition,
    From,
    JwtAuthentication,
    JwtAuthorization,
    Metadata,
    Operation,
    Provider,
    Rule,
    Source,
    To,
)
from processing import (
    ObjectChange,
    new_object_create_action,
    new_object_delete_action,
    new_object_update_action,
)
from utils import (
    AUDIENCE_KEY,
    DEFAULT_SCOPE_KEYS,
    ISTIO_INGRESS_GATEWAY_PRINCIPAL,
    ISTIO_WILDCARD_PATH,
    LEGACY_WILDCARD_PATH,
    PolicyCompilationError,
    add_hashing_labels,
    get_gateway_domain,
    get_host_with_domain,
    get_module_labels,
    get_owner_labels,
    is_short_host_name,
)

logger = logging.getLogger(__name__)


def _to_resource(policy: AuthorizationPolicyResource) -> GenericNamespacedResource:
    auth_resource = RESOURCE_TYPES["AuthorizationPolicy"]
    return auth_resource(
        metadata=ObjectMeta.from_dict(policy.metadata.model_dump(exclude_none=True)),
        # by_alias=True because the model includes an alias for the `from` field
        # exclude_none=True because null values in this data always mean the Kubernetes default
        spec=policy.spec.model_dump(by_alias=True, exclude_none=True, mode="json"),
    )


def _authentications(rule: Rule) -> List[JwtAuthentication]:
    if rule.jwt is not None:
        return rule.jwt.authentications
    if rule.extAuth is not None and rule.extAuth.restrictions is not None:
        return rule.extAuth.restrictions.authentications
    return []


class AuthorizationPolicyCreator:
    """Creates the AuthorizationPolicies using the configuration of an APIRule."""

    def __init__(
        self,
        client: Client,
        ext_auth_enabled: bool = True,
        gateway: Optional[Dict[str, Any]] = None,
    ):
        self.client = client
        self.ext_auth_enabled = ext_auth_enabled
        self.gateway = gateway

    def create(self, api_rule: APIRule) -> Desired:
        """Return the desired state of the AuthorizationPolicies of the APIRule.

        Raises:
            ServiceResolutionError: If a rule has no service.
            PolicyCompilationError: If a rule cannot be compiled into policies.
            HTTPStatusError: If a service cannot be read.
        """
        hosts = self._resolve_hosts(api_rule)

        state = Desired()
        for rule in api_rule.spec.rules:
            for policy in self._generate_authorization_policies(api_rule, rule, hosts):
                state.add(AuthorizationPolicyHashable(_to_resource(policy)))
        return state

    def _resolve_hosts(self, api_rule: APIRule) -> List[str]:
        hosts: List[str] = []
        gateway_domain = ""
        for host in api_rule.spec.hosts:
            if not is_short_host_name(host):
                hosts.append(host)
                continue

            if not gateway_domain:
                if self.gateway is None:
                    raise PolicyCompilationError(
                        "gateway must be provided when using short host name"
                    )
                gateway_domain = get_gateway_domain(self.gateway)
            if not gateway_domain:
                raise PolicyCompilationError(
                    "gateway with host definition must be provided when using short host name"
                )
            hosts.append(get_host_with_domain(host, gateway_domain))
        return hosts

    def _generate_authorization_policies(
        self, api_rule: APIRule, rule: Rule, hosts: List[str]
    ) -> List[AuthorizationPolicyResource]:
        policies: List[AuthorizationPolicyResource] = []
        authorizations: List[JwtAuthorization] = []
        base_hash_index = 0

        if rule.jwt is not None:
            authorizations = list(rule.jwt.authorizations)
        elif rule.extAuth is not None:
            if not self.ext_auth_enabled:
                raise PolicyCompilationError(
                    f"extAuth is used on path {rule.path} but is not enabled"
                )
            for index, authorizer in enumerate(rule.extAuth.authorizers):
                policy = self._generate_ext_auth_authorization_policy(
                    api_rule, rule, hosts, authorizer
                )
                add_hashing_labels(policy, index)
                policies.append(policy)

            # ALLOW policies are indexed after the CUSTOM policies of the authorizers.
            base_hash_index = len(rule.extAuth.authorizers)
            if rule.extAuth.restrictions is not None:
                authorizations = list(rule.extAuth.restrictions.authorizations)

        if not authorizations:
            # Without authorizations a single policy allows everything matched by the selector and the operation.
            policy = self._generate_authorization_policy(
                api_rule, rule, hosts, JwtAuthorization()
            )
            add_hashing_labels(policy, base_hash_index)
            policies.append(policy)
            return policies

        for index_in_yaml, authorization in enumerate(authorizations):
            policy = self._generate_authorization_policy(api_rule, rule, hosts, authorization)
            add_hashing_labels(policy, index_in_yaml + base_hash_index)
            policies.append(policy)

        return policies

    def _base_metadata(self, api_rule: APIRule, rule: Rule) -> Metadata:
        return Metadata(
            generateName=f"{api_rule.metadata.name}-",
            namespace=find_service_namespace(api_rule, rule),
            labels={**get_owner_labels(api_rule), **get_module_labels()},
        )

    def _generate_ext_auth_authorization_policy(
        self, api_rule: APIRule, rule: Rule, hosts: List[str], authorizer: str
    ) -> AuthorizationPolicyResource:
        pod_selector = get_selector_from_service(self.client, api_rule, rule)
        return AuthorizationPolicyResource(
            metadata=self._base_metadata(api_rule, rule),
            spec=AuthorizationPolicySpec(
                action=Action.custom,
                provider=Provider(name=authorizer),
                selector=pod_selector.selector,
                rules=[AuthRule(to=[self._to(rule, hosts)])],
            ),
        )

    def _generate_authorization_policy(
        self,
        api_rule: APIRule,
        rule: Rule,
        hosts: List[str],
        authorization: JwtAuthorization,
    ) -> AuthorizationPolicyResource:
        pod_selector = get_selector_from_service(self.client, api_rule, rule)
        return AuthorizationPolicyResource(
            metadata=self._base_metadata(api_rule, rule),
            spec=AuthorizationPolicySpec(
                action=Action.allow,
                selector=pod_selector.selector,
                rules=self._rules(rule, hosts, authorization),
            ),
        )

    def _rules(
        self, rule: Rule, hosts: List[str], authorization: JwtAuthorization
    ) -> List[AuthRule]:
        audience_conditions = [
            Condition(key=AUDIENCE_KEY, values=[audience]) for audience in authorization.audiences
        ]

        if not authorization.requiredScopes:
            return [self._base_rule(rule, hosts, audience_conditions)]

        # Issuers name the scope claim differently, so one rule is generated per known claim key.
        rules = []
        for scope_key in DEFAULT_SCOPE_KEYS:
            scope_conditions = [
                Condition(key=scope_key, values=[scope]) for scope in authorization.requiredScopes
            ]
            rules.append(self._base_rule(rule, hosts, scope_conditions + audience_conditions))
        return rules

    def _base_rule(self, rule: Rule, hosts: List[str], when: List[Condition]) -> AuthRule:
        return AuthRule(
            to=[self._to(rule, hosts)],
            from_=[self._from(rule)],  # type: ignore # this is accessible via an alias
            when=when or None,
        )

    @staticmethod
    def _to(rule: Rule, hosts: List[str]) -> To:
        path = rule.path
        if path == LEGACY_WILDCARD_PATH:
            path = ISTIO_WILDCARD_PATH
        return To(
            operation=Operation(
                hosts=list(hosts) or None,
                methods=list(rule.methods) or None,
                paths=[path],
            )
        )

    @staticmethod
    def _from(rule: Rule) -> From:
        authentications = _authentications(rule)
        if authentications:
            return From(
                source=Source(
                    requestPrincipals=[f"{a.issuer}/*" for a in authentications],
                )
            )
        # Only traffic that already passed the ingress gateway is allowed.
        return From(source=Source(principals=[ISTIO_INGRESS_GATEWAY_PRINCIPAL]))


class AuthorizationPolicyProcessor:
    """Handles the Istio AuthorizationPolicies in the reconciliation of an APIRule."""

    def __init__(
        self,
        client: Client,
        repository: KubernetesResourceRepository,
        ext_auth_enabled: bool = True,
        gateway: Optional[Dict[str, Any]] = None,
    ):
        self.creator = AuthorizationPolicyCreator(
            client, ext_auth_enabled=ext_auth_enabled, gateway=gateway
        )
        self.repository = repository

    def evaluate_reconciliation(self, api_rule: APIRule) -> List[ObjectChange]:
        """Return the changes needed to bring the AuthorizationPolicies of the APIRule to the desired state."""
        desired = self.creator.create(api_rule)
        actual = self._get_actual_state(api_rule)

        changes = get_changes(desired, actual)
        logger.info(f"Authorization policy changes that will be applied: {changes}")

        object_changes: List[ObjectChange] = []
        object_changes.extend(new_object_create_action(ap) for ap in changes.create)
        object_changes.extend(new_object_update_action(ap) for ap in changes.update)
        object_changes.extend(new_object_delete_action(ap) for ap in changes.delete)
        return object_changes

    def _get_actual_state(self, api_rule: APIRule) -> Actual:
        state = Actual()
        for ap in self.repository.get_all(RESOURCE_TYPES["AuthorizationPolicy"], api_rule):
            state.add(AuthorizationPolicyHashable(ap))
        return state
