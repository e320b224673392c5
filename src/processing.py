#!/usr/bin/env python3

# Copyright 2024 Canonical Ltd.
# See LICENSE file for licensing details.

"""Object changes handed by the processors to the apply layer."""

from dataclasses import dataclass
from enum import Enum
from typing import List, Protocol

from lightkube.generic_resource import GenericNamespacedResource

from models import APIRule


class ActionType(str, Enum):
    """ActionType is the operation the apply layer performs for an object."""

    create = "create"
    update = "update"
    delete = "delete"


@dataclass
class ObjectChange:
    """A single object and the action that has to be applied for it."""

    action: ActionType
    obj: GenericNamespacedResource


def new_object_create_action(obj: GenericNamespacedResource) -> ObjectChange:
    return ObjectChange(action=ActionType.create, obj=obj)


def new_object_update_action(obj: GenericNamespacedResource) -> ObjectChange:
    return ObjectChange(action=ActionType.update, obj=obj)


def new_object_delete_action(obj: GenericNamespacedResource) -> ObjectChange:
    return ObjectChange(action=ActionType.delete, obj=obj)


class ReconciliationProcessor(Protocol):
    """A processor evaluating the changes of one resource kind for an APIRule."""

    def evaluate_reconciliation(self, api_rule: APIRule) -> List[ObjectChange]:
        ...
