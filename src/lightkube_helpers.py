#!/usr/bin/env python3

# Copyright 2024 Canonical Ltd.
# See LICENSE file for licensing details.

"""A helper module that wraps the lightkube calls the reconciliation engine depends on."""


import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Type

from httpx import HTTPStatusError
from lightkube.core.client import Client
from lightkube.generic_resource import GenericNamespacedResource, create_namespaced_resource
from lightkube.resources.core_v1 import Service as K8sService

from models import APIRule, Rule, WorkloadSelector
from utils import ServiceResolutionError, get_owner_labels

logger = logging.getLogger(__name__)


RESOURCE_TYPES = {
    "AuthorizationPolicy": create_namespaced_resource(
        "security.istio.io",
        "v1",
        "AuthorizationPolicy",
        "authorizationpolicies",
    ),
    "RequestAuthentication": create_namespaced_resource(
        "security.istio.io",
        "v1",
        "RequestAuthentication",
        "requestauthentications",
    ),
    "Gateway": create_namespaced_resource(
        "networking.istio.io", "v1beta1", "Gateway", "gateways"
    ),
}


def create_client(field_manager: str) -> Client:
    """Return a lightkube client that applies changes under the given field manager."""
    return Client(field_manager=field_manager)


@dataclass
class PodSelector:
    """The workload selector of a service and the namespace the service lives in."""

    selector: Optional[WorkloadSelector] = None
    namespace: str = ""


def find_service_namespace(api_rule: APIRule, rule: Rule) -> str:
    """Return the namespace of the service backing the rule.

    Fallback order: rule service, spec service, namespace of the APIRule.
    """
    if rule.service is not None and rule.service.namespace is not None:
        return rule.service.namespace

    if api_rule.spec.service is not None and api_rule.spec.service.namespace is not None:
        return api_rule.spec.service.namespace

    return api_rule.metadata.namespace


def get_selector_from_service(client: Client, api_rule: APIRule, rule: Rule) -> PodSelector:
    """Return the pod selector of the service backing the rule.

    Args:
        client (Client): The lightkube client used to read the Service.
        api_rule (APIRule): The APIRule the rule belongs to.
        rule (Rule): The rule to resolve the service for.

    Returns:
        PodSelector: The selector of the service, empty if the service selects no pods.

    Raises:
        ServiceResolutionError: If neither the rule nor the APIRule names a service.
        HTTPStatusError: If the service cannot be read.
    """
    service = rule.service if rule.service is not None else api_rule.spec.service
    if service is None or service.name is None:
        raise ServiceResolutionError("service name is required but missing")

    namespace = service.namespace or find_service_namespace(api_rule, rule) or "default"

    try:
        svc = client.get(K8sService, name=service.name, namespace=namespace)
    except HTTPStatusError as e:
        if e.response.status_code == 404:
            logger.info(f"Service {service.name} not found in namespace {namespace}")
        else:
            logger.error(f"HTTP error getting service {service.name}: {e}")
        raise

    if svc.spec is None or not svc.spec.selector:
        return PodSelector()

    return PodSelector(
        selector=WorkloadSelector(matchLabels=dict(svc.spec.selector)),
        namespace=namespace,
    )


class KubernetesResourceRepository:
    """Read access to the objects generated for APIRules."""

    def __init__(self, client: Client):
        self.client = client

    def get_all(
        self, resource_type: Type[GenericNamespacedResource], api_rule: APIRule
    ) -> List[GenericNamespacedResource]:
        """Return all objects of the given type owned by the APIRule, across namespaces.

        Args:
            resource_type: The lightkube resource class to list.
            api_rule (APIRule): The APIRule whose owner label filters the objects.

        Returns:
            List[GenericNamespacedResource]: The objects carrying the owner label.
        """
        labels = get_owner_labels(api_rule)
        try:
            return list(self.client.list(resource_type, namespace="*", labels=labels))
        except HTTPStatusError as e:
            logger.error(f"HTTP error listing {resource_type.__name__} with labels {labels}: {e}")
            raise

    def get_gateway(self, api_rule: APIRule) -> Optional[Dict[str, Any]]:
        """Return the Istio Gateway referenced by the APIRule as "<namespace>/<name>".

        Returns:
            The gateway object, None if the APIRule references no gateway or it was not found.
        """
        if not api_rule.spec.gateway:
            return None

        namespace, _, name = api_rule.spec.gateway.partition("/")
        if not name:
            logger.error(f"Invalid gateway reference {api_rule.spec.gateway}")
            return None

        try:
            return self.client.get(RESOURCE_TYPES["Gateway"], name=name, namespace=namespace)
        except HTTPStatusError as e:
            if e.response.status_code == 404:
                logger.info(f"Gateway {api_rule.spec.gateway} not found")
                return None
            logger.error(f"HTTP error getting gateway {api_rule.spec.gateway}: {e}")
            raise
