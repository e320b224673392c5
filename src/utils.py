#!/usr/bin/env python3

# Copyright 2024 Canonical Ltd.
# See LICENSE file for licensing details.

"""Utility functions for the APIRule reconciliation engine.

This module contains the label contract, the identity hashing of generated policies and
the helpers shared by the processors. Functions here are pure and work on the models
defined in models.py.
"""
import hashlib
import json
import logging
from typing import Any, Dict, List, Optional

from models import APIRule, AuthorizationPolicyResource, To, WorkloadSelector

logger = logging.getLogger(__name__)


# ============================================================================
# Constants
# ============================================================================
HASH_LABEL_NAME = "gateway.kyma-project.io/hash"
INDEX_LABEL_NAME = "gateway.kyma-project.io/index"
OWNER_LABEL = "apirule.gateway.kyma-project.io/v1beta1"

MODULE_LABEL_KEY = "kyma-project.io/module"
K8S_MANAGED_BY_LABEL_KEY = "app.kubernetes.io/managed-by"
K8S_COMPONENT_LABEL_KEY = "app.kubernetes.io/component"
K8S_PART_OF_LABEL_KEY = "app.kubernetes.io/part-of"
API_GATEWAY_LABEL_VALUE = "api-gateway"

ISTIO_INGRESS_GATEWAY_PRINCIPAL = (
    "cluster.local/ns/istio-system/sa/istio-ingressgateway-service-account"
)
AUDIENCE_KEY = "request.auth.claims[aud]"
DEFAULT_SCOPE_KEYS = [
    "request.auth.claims[scp]",
    "request.auth.claims[scope]",
    "request.auth.claims[scopes]",
]

LEGACY_WILDCARD_PATH = "/.*"
ISTIO_WILDCARD_PATH = "/*"

MAX_LABEL_VALUE_LENGTH = 63


# ============================================================================
# Exception Classes
# ============================================================================
class ServiceResolutionError(RuntimeError):
    """Raised when the service backing a rule cannot be determined."""


class PolicyCompilationError(RuntimeError):
    """Raised when an APIRule cannot be compiled into policies."""


class MissingHashLabelsError(RuntimeError):
    """Raised when a desired object is missing the hash or index label."""


# ============================================================================
# Owner labels
# ============================================================================
def get_owner_labels(api_rule: APIRule) -> Dict[str, str]:
    """Return the labels that scope generated objects to the given APIRule."""
    return {OWNER_LABEL: f"{api_rule.metadata.name}.{api_rule.metadata.namespace}"}


def get_module_labels() -> Dict[str, str]:
    """Return the labels marking an object as managed by the api-gateway module."""
    return {
        MODULE_LABEL_KEY: API_GATEWAY_LABEL_VALUE,
        K8S_MANAGED_BY_LABEL_KEY: API_GATEWAY_LABEL_VALUE,
        K8S_COMPONENT_LABEL_KEY: API_GATEWAY_LABEL_VALUE,
        K8S_PART_OF_LABEL_KEY: API_GATEWAY_LABEL_VALUE,
    }


# ============================================================================
# Hashing
# ============================================================================
def _as_set(value: Any) -> Any:
    """Return a canonical form of value where every list is treated as an unordered set."""
    if isinstance(value, dict):
        return {key: _as_set(item) for key, item in value.items() if item is not None}
    if isinstance(value, (list, tuple, set)):
        items = {json.dumps(_as_set(item), sort_keys=True) for item in value}
        return sorted(items)
    return value


def _short_hash(value: Any) -> str:
    canonical = json.dumps(_as_set(value), sort_keys=True)
    return hashlib.md5(canonical.encode()).hexdigest()[:10]


def compute_hash(
    namespace: str, selector: Optional[WorkloadSelector], to: List[To]
) -> str:
    """Compute the content hash identifying a policy.

    Only the namespace, the workload selector and the targeted operations take part in
    the hash, so changing the sources or the conditions of a policy keeps its identity.

    Args:
        namespace: Namespace the policy is created in.
        selector: Workload selector of the policy, if any.
        to: Operations the policy applies to.

    Returns:
        A string in the format "{namespace}.{hash(selector)}.{hash(to)}".
    """
    selector_dump = selector.model_dump(exclude_none=True) if selector else {}
    to_dump = [t.model_dump(exclude_none=True) for t in to]

    selector_hash = _short_hash(selector_dump)
    to_hash = _short_hash(to_dump)

    # Label values are limited to 63 characters, the hashes must stay intact.
    max_namespace_length = MAX_LABEL_VALUE_LENGTH - len(selector_hash) - len(to_hash) - 2
    return f"{namespace[:max_namespace_length]}.{selector_hash}.{to_hash}"


def get_authorization_policy_hash(policy: AuthorizationPolicyResource) -> str:
    """Return the content hash of an AuthorizationPolicy."""
    to: List[To] = []
    for rule in policy.spec.rules:
        to.extend(rule.to or [])
    return compute_hash(policy.metadata.namespace, policy.spec.selector, to)


def add_hashing_labels(policy: AuthorizationPolicyResource, index_in_yaml: int) -> None:
    """Add the hash and index labels used to compare the policy with the cluster state.

    The index is the position of the authorization in the APIRule. Sequences keep their
    order, so the index stays the same as long as the authorizations are not restructured.
    """
    labels = dict(policy.metadata.labels or {})
    labels[INDEX_LABEL_NAME] = str(index_in_yaml)
    labels[HASH_LABEL_NAME] = get_authorization_policy_hash(policy)
    policy.metadata.labels = labels


def create_hash_key(hash_value: str, index_value: str) -> str:
    """Return a key in the format of "hash:index"."""
    return f"{hash_value}:{index_value}"


# ============================================================================
# Hosts
# ============================================================================
def is_short_host_name(host: str) -> bool:
    """Return True if the host is not fully qualified."""
    return "." not in host


def get_host_with_domain(host: str, domain: str) -> str:
    """Expand a short host with the given domain."""
    return f"{host}.{domain}"


def get_gateway_domain(gateway: Optional[Dict[str, Any]]) -> str:
    """Return the domain of the first host configured on an Istio Gateway, without wildcard.

    Args:
        gateway: Istio Gateway object as returned by the Kubernetes API.

    Returns:
        The domain, or an empty string if the gateway defines no hosts.
    """
    if not gateway:
        return ""
    for server in gateway.get("spec", {}).get("servers", []):
        hosts = server.get("hosts") or []
        if hosts:
            return hosts[0].removeprefix("*.")
    return ""
