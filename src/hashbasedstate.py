#!/usr/bin/env python3

# Copyright 2024 Canonical Ltd.
# See LICENSE file for licensing details.

"""Compare objects by a hash and a position in a yaml sequence.

This module should only be used for objects created from yaml sequences, as they have a
defined order. The comparison is based on two labels put on a Kubernetes object: the hash
label holds the hash that represents the object and the index label holds the position of
the object in the sequence. Both are used to identify if an object was changed, removed or
newly added.
"""

import copy
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Protocol

from lightkube.generic_resource import GenericNamespacedResource

from utils import HASH_LABEL_NAME, INDEX_LABEL_NAME, MissingHashLabelsError, create_hash_key

logger = logging.getLogger(__name__)


class Hashable(Protocol):
    """An object that can be compared by its hash and index labels."""

    def hash(self) -> Optional[str]:
        """Return the value of the hash label, None if it is not set."""
        ...

    def index(self) -> Optional[str]:
        """Return the value of the index label, None if it is not set."""
        ...

    def update_spec(self, other: "Hashable") -> None:
        """Replace the spec of the wrapped object with the spec of other."""
        ...

    def to_object(self) -> GenericNamespacedResource:
        """Return the wrapped Kubernetes object."""
        ...


class AuthorizationPolicyHashable:
    """Hashable wrapper around an AuthorizationPolicy lightkube resource."""

    def __init__(self, resource: GenericNamespacedResource):
        self._resource = resource

    def _label(self, name: str) -> Optional[str]:
        metadata = self._resource.metadata
        if metadata is None or not metadata.labels:
            return None
        return metadata.labels.get(name)

    def hash(self) -> Optional[str]:
        return self._label(HASH_LABEL_NAME)

    def index(self) -> Optional[str]:
        return self._label(INDEX_LABEL_NAME)

    def update_spec(self, other: Hashable) -> None:
        # Only the spec is replaced, so name, namespace, resourceVersion and annotations are kept.
        self._resource["spec"] = copy.deepcopy(other.to_object()["spec"])

    def to_object(self) -> GenericNamespacedResource:
        return self._resource


def _object_name(obj: GenericNamespacedResource) -> str:
    metadata = obj.metadata
    if metadata is None:
        return ""
    return metadata.name or metadata.generateName or ""


class Actual:
    """The state of the objects found in the cluster."""

    def __init__(self):
        self.hashables: Dict[str, Hashable] = {}
        self.marked_for_deletion: List[GenericNamespacedResource] = []

    def add(self, h: Hashable) -> None:
        """Add a hashable to the actual state.

        Objects without hash or index label cannot be compared, so they are always marked
        for deletion. This is the case for objects created before the labels were introduced.
        """
        hash_value = h.hash()
        if hash_value is None:
            logger.debug(f"Object {_object_name(h.to_object())} has no hash label")
            self.marked_for_deletion.append(h.to_object())
            return

        index_value = h.index()
        if index_value is None:
            logger.debug(f"Object {_object_name(h.to_object())} has no index label")
            self.marked_for_deletion.append(h.to_object())
            return

        self.hashables[create_hash_key(hash_value, index_value)] = h

    def contains_key(self, key: str) -> bool:
        return key in self.hashables

    def all_entries(self) -> Dict[str, Hashable]:
        return self.hashables

    def __len__(self) -> int:
        return len(self.hashables) + len(self.marked_for_deletion)

    def __str__(self) -> str:
        return f"Keys in state: {', '.join(self.hashables)}"


class Desired:
    """The state of the objects generated from the APIRule."""

    def __init__(self):
        self.hashables: Dict[str, Hashable] = {}

    def add(self, h: Hashable) -> None:
        """Add a hashable to the desired state.

        Raises:
            MissingHashLabelsError: if the hash or the index label is missing.
        """
        hash_value = h.hash()
        if hash_value is None:
            raise MissingHashLabelsError(
                f"hash label is missing on desired object {_object_name(h.to_object())}"
            )

        index_value = h.index()
        if index_value is None:
            raise MissingHashLabelsError(
                f"index label is missing on desired object {_object_name(h.to_object())}"
            )

        self.hashables[create_hash_key(hash_value, index_value)] = h

    def contains_key(self, key: str) -> bool:
        return key in self.hashables

    def all_entries(self) -> Dict[str, Hashable]:
        return self.hashables

    def get_objects_not_in(self, actual: Actual) -> List[GenericNamespacedResource]:
        """Return the desired objects whose key is not present in the actual state."""
        return [h.to_object() for key, h in self.hashables.items() if not actual.contains_key(key)]

    def __len__(self) -> int:
        return len(self.hashables)

    def __str__(self) -> str:
        return f"Keys in state: {', '.join(self.hashables)}"


@dataclass
class Changes:
    """Changes that need to be applied to reach the desired state.

    The order of the objects in each list has no meaning.
    """

    create: List[GenericNamespacedResource] = field(default_factory=list)
    update: List[GenericNamespacedResource] = field(default_factory=list)
    delete: List[GenericNamespacedResource] = field(default_factory=list)

    def __str__(self) -> str:
        to_create = ", ".join(_object_name(obj) for obj in self.create)
        to_update = ", ".join(_object_name(obj) for obj in self.update)
        to_delete = ", ".join(_object_name(obj) for obj in self.delete)
        return f"Create: {to_create}; Update: {to_update}; Delete: {to_delete}"


def get_changes(desired: Desired, actual: Actual) -> Changes:
    """Return the changes needed to reach the desired state by comparing the hash keys of both states."""
    changes = Changes()

    for key, actual_hashable in actual.all_entries().items():
        if desired.contains_key(key):
            # Not all fields are part of the hash, so the desired spec is written to the existing object.
            # This also overwrites manual changes made in the cluster.
            actual_hashable.update_spec(desired.all_entries()[key])
            changes.update.append(actual_hashable.to_object())
        else:
            changes.delete.append(actual_hashable.to_object())

    changes.delete.extend(actual.marked_for_deletion)

    # Desired objects without a counterpart in the cluster are new.
    changes.create.extend(desired.get_objects_not_in(actual))

    return changes
