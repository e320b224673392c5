#!/usr/bin/env python3

# Copyright 2024 Canonical Ltd.
# See LICENSE file for licensing details.

"""Reconciliation of an APIRule across all generated resource kinds."""

import logging
from typing import List, Optional

from lightkube.core.client import Client

from authorization_policy import AuthorizationPolicyProcessor
from config import ReconcilerConfig
from lightkube_helpers import KubernetesResourceRepository, create_client
from models import APIRule
from processing import ObjectChange, ReconciliationProcessor
from request_authentication import RequestAuthenticationProcessor
from utils import is_short_host_name

logger = logging.getLogger(__name__)


class Reconciliation:
    """Reconciliation holds the processors needed to reconcile an APIRule."""

    def __init__(self, processors: List[ReconciliationProcessor]):
        self.processors = processors

    def evaluate(self, api_rule: APIRule) -> List[ObjectChange]:
        """Return the changes of all processors.

        The first failing processor aborts the evaluation, so either all changes for the
        APIRule are returned or none.
        """
        object_changes: List[ObjectChange] = []
        for processor in self.processors:
            object_changes.extend(processor.evaluate_reconciliation(api_rule))

        logger.info(
            f"Evaluated {len(object_changes)} changes for APIRule "
            f"{api_rule.metadata.namespace}/{api_rule.metadata.name}"
        )
        return object_changes


def new_reconciliation(
    api_rule: APIRule, config: ReconcilerConfig, client: Optional[Client] = None
) -> Reconciliation:
    """Return a Reconciliation with the AuthorizationPolicy and RequestAuthentication processors.

    The gateway of the APIRule is only read if one of its hosts is a short host name.
    """
    if client is None:
        client = create_client(config.field_manager)
    repository = KubernetesResourceRepository(client)

    gateway = None
    if any(is_short_host_name(host) for host in api_rule.spec.hosts):
        gateway = repository.get_gateway(api_rule)

    return Reconciliation(
        processors=[
            AuthorizationPolicyProcessor(
                client,
                repository,
                ext_auth_enabled=config.ext_auth_enabled,
                gateway=gateway,
            ),
            RequestAuthenticationProcessor(client, repository),
        ]
    )
