"""Stable (kind, name) identities for billable entities.

Workload instances are folded onto the thing a tenant actually manages:
a database cluster, an app, a terminal, a job, or the controller that owns
the pod. Rules are evaluated in order and the first match wins.
"""

from __future__ import annotations

from typing import Callable, Mapping

from kubemeter_core.metering.types import (
    EntityIdentity,
    NetworkService,
    OwnerReference,
    VolumeClaim,
    WorkloadInstance,
)

KIND_DB = "DB"
KIND_APP = "APP"
KIND_TERMINAL = "TERMINAL"
KIND_JOB = "JOB"
KIND_POD = "Pod"
KIND_PVC = "PersistentVolumeClaim"
KIND_SERVICE = "Service"
KIND_OBJECT_STORAGE = "ObjectStorage"
KIND_GPU = "GPU"

DB_COMPONENT_LABEL = "apps.kubeblocks.io/component-name"
DB_INSTANCE_LABEL = "app.kubernetes.io/instance"
TERMINAL_LABEL = "TerminalID"
JOB_LABEL = "job-name"
APP_LABEL = "app"
POD_TEMPLATE_HASH_LABEL = "pod-template-hash"

_LabelRule = Callable[[Mapping[str, str]], EntityIdentity | None]


def _db_rule(labels: Mapping[str, str]) -> EntityIdentity | None:
    if DB_COMPONENT_LABEL in labels and labels.get(DB_INSTANCE_LABEL):
        return EntityIdentity(KIND_DB, labels[DB_INSTANCE_LABEL])
    return None


def _label_rule(label: str, kind: str) -> _LabelRule:
    def rule(labels: Mapping[str, str]) -> EntityIdentity | None:
        value = labels.get(label)
        if value:
            return EntityIdentity(kind, value)
        return None

    return rule


LABEL_RULES: tuple[_LabelRule, ...] = (
    _db_rule,
    _label_rule(TERMINAL_LABEL, KIND_TERMINAL),
    _label_rule(JOB_LABEL, KIND_JOB),
    _label_rule(APP_LABEL, KIND_APP),
)


def _controller(owners: tuple[OwnerReference, ...]) -> OwnerReference | None:
    for owner in owners:
        if owner.controller:
            return owner
    return owners[0] if owners else None


def _fold_owner(owner: OwnerReference, labels: Mapping[str, str]) -> EntityIdentity:
    if owner.kind == "ReplicaSet":
        template_hash = labels.get(POD_TEMPLATE_HASH_LABEL)
        suffix = f"-{template_hash}" if template_hash else ""
        if suffix and owner.name.endswith(suffix):
            return EntityIdentity("Deployment", owner.name[: -len(suffix)])
    return EntityIdentity(owner.kind, owner.name)


def workload_identity(instance: WorkloadInstance) -> EntityIdentity:
    labels = instance.labels or {}
    for rule in LABEL_RULES:
        identity = rule(labels)
        if identity is not None:
            return identity
    owner = _controller(instance.owners)
    if owner is not None:
        return _fold_owner(owner, labels)
    return EntityIdentity(KIND_POD, instance.name)


def claim_identity(claim: VolumeClaim) -> EntityIdentity:
    return EntityIdentity(KIND_PVC, claim.name)


def service_identity(service: NetworkService) -> EntityIdentity:
    return EntityIdentity(KIND_SERVICE, service.name)


def bucket_identity(bucket: str) -> EntityIdentity:
    return EntityIdentity(KIND_OBJECT_STORAGE, bucket)


def gpu_identity(product: str) -> EntityIdentity:
    return EntityIdentity(KIND_GPU, product)
