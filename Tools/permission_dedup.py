#!/usr/bin/env python3
# permission_dedup.py - VIADMIN Permission Deduplicator
# Version 1.0 - October 2026
# Author - VIADMIN Core Team
# Removes explicit permissions that duplicate a grant already held by an
# ancestor entity on the same inventory path

"""
Permission Deduplicator

Walks one or more inventory subtrees depth-first, parent before children.
Every permission assigned directly to an entity is compared against the
(principal, role) grants collected from its ancestors on the current path:

- a match is redundant: it is reported and, unless this is a dry run,
  removed through the mutator (the platform's own propagation covers it)
- anything else is added to the context handed down to the children

The first grant along a path wins. Each child receives its own copy of the
extended context so nothing found under one child is visible to a sibling.

The inventory and mutation collaborators are passed in explicitly; see
vsphere_inventory.py for the pyVmomi implementations.
"""

import logging
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Protocol, Sequence, Tuple, Any
from dataclasses import dataclass, field
from enum import Enum

import vifunctions as vif

logger = logging.getLogger(__name__)

#==============================================================================
# ERRORS
#==============================================================================

class PermissionOptimizerError(Exception):
    """Base class for permission optimizer errors"""


class RootResolutionError(PermissionOptimizerError):
    """A requested root could not be resolved; aborts the whole run"""


class SubtreeReadError(PermissionOptimizerError):
    """Children or permissions of an entity could not be read"""


class RemovalError(PermissionOptimizerError):
    """The mutator failed to remove a redundant permission"""


class NotFoundError(PermissionOptimizerError):
    """The entity or grant no longer exists"""


class UnauthorizedError(PermissionOptimizerError):
    """The session lacks the privilege for the requested operation"""

#==============================================================================
# DATA MODEL
#==============================================================================

PermissionKey = Tuple[str, Any]


@dataclass(frozen=True)
class EntityRef:
    """Reference to an inventory entity"""
    id: str
    name: str
    obj: Any = field(default=None, compare=False, hash=False, repr=False)


@dataclass(frozen=True)
class Permission:
    """A permission assigned directly to an entity"""
    principal: str
    role: Any
    propagate: bool = True
    entity_id: str = ''
    is_group: bool = False

    @property
    def key(self) -> PermissionKey:
        return (self.principal, self.role)


class Action(Enum):
    REMOVED = "removed"
    WOULD_REMOVE = "would-remove"
    FAILED = "failed"


@dataclass
class ReportEntry:
    """One redundant permission found during the walk"""
    entity_id: str
    entity_name: str
    principal: str
    role: Any
    action: Action
    is_group: bool = False
    propagate: bool = True
    source_entity_id: str = ''  # ancestor that already grants the same key
    role_name: str = ''
    error: str = ''


@dataclass
class ReportError:
    """A failure or warning recorded without stopping the walk"""
    kind: str  # read, remove, ambiguous
    entity_id: str
    entity_name: str
    message: str
    principal: str = ''


@dataclass
class OptimizeReport:
    dry_run: bool
    entries: List[ReportEntry] = field(default_factory=list)
    errors: List[ReportError] = field(default_factory=list)
    visited: int = 0
    cancelled: bool = False

    @property
    def removed_count(self) -> int:
        return sum(1 for e in self.entries if e.action == Action.REMOVED)

    @property
    def would_remove_count(self) -> int:
        return sum(1 for e in self.entries if e.action == Action.WOULD_REMOVE)

    @property
    def failed_count(self) -> int:
        return sum(1 for e in self.entries if e.action == Action.FAILED)

    @property
    def ok(self) -> bool:
        """True if nothing failed and the run was not cancelled; ambiguity warnings don't count"""
        if self.cancelled:
            return False
        return not any(err.kind != 'ambiguous' for err in self.errors)


@dataclass
class RetryPolicy:
    attempts: int = 1
    delay: float = 0.0
    backoff: float = 2.0

#==============================================================================
# COLLABORATORS
#==============================================================================

class InventoryReader(Protocol):
    def get_children(self, ref: EntityRef) -> Sequence[EntityRef]:
        ...

    def get_permissions(self, ref: EntityRef) -> Sequence[Permission]:
        ...


class PermissionMutator(Protocol):
    def remove_permission(self, ref: EntityRef, principal: str, is_group: bool) -> None:
        ...


class CancelToken(Protocol):
    def is_set(self) -> bool:
        ...

#==============================================================================
# DEDUPLICATOR
#==============================================================================

# Never retried
_PERMANENT_ERRORS = (NotFoundError, UnauthorizedError)

_EMPTY_CONTEXT: Mapping[PermissionKey, Permission] = MappingProxyType({})


class PermissionDeduplicator:
    """
    Finds and removes permissions already granted on an ancestor

    The instance holds only collaborators and options; every call to
    optimize() starts from a fresh, empty context per root.
    """

    def __init__(self, inventory: InventoryReader, mutator: PermissionMutator,
                 retry: Optional[RetryPolicy] = None,
                 role_names: Optional[Dict[Any, str]] = None):
        self.inventory = inventory
        self.mutator = mutator
        self.retry = retry or RetryPolicy()
        self.role_names = role_names or {}

    def optimize(self, roots: Sequence[EntityRef], dry_run: bool = False,
                 cancel: Optional[CancelToken] = None) -> OptimizeReport:
        """
        Scan each root and remove (or report) redundant permissions

        :param roots: Resolved root entities, scanned in the given order
        :param dry_run: Report what would be removed without calling the mutator
        :param cancel: Optional token checked once per entity visited
        :return: OptimizeReport with entries in discovery order
        """
        report = OptimizeReport(dry_run=dry_run)
        for root in roots:
            if root is None:
                raise RootResolutionError('Root entity reference is empty')
            logger.debug('Scanning from root %s (%s)', root.name, root.id)
            if not self._visit(root, _EMPTY_CONTEXT, report, cancel):
                break
        return report

    def _visit(self, ref: EntityRef, inherited: Mapping[PermissionKey, Permission],
               report: OptimizeReport, cancel: Optional[CancelToken]) -> bool:
        """Process one entity and its subtree; returns False once cancelled"""
        if cancel is not None and cancel.is_set():
            if not report.cancelled:
                logger.info('Cancellation requested, stopping at %s', ref.name)
            report.cancelled = True
            return False

        try:
            permissions = self._read(self.inventory.get_permissions, ref)
            children = self._read(self.inventory.get_children, ref)
        except SubtreeReadError as e:
            logger.warning('Skipping %s: %s', ref.name, e)
            report.errors.append(ReportError('read', ref.id, ref.name, str(e)))
            return True

        report.visited += 1
        surviving: Dict[PermissionKey, Permission] = {}
        seen = set()

        for perm in permissions:
            if perm.key in seen:
                report.errors.append(ReportError(
                    'ambiguous', ref.id, ref.name,
                    f'Multiple entries for principal {perm.principal} role {perm.role} '
                    f'(propagate={perm.propagate}); only the first is considered',
                    principal=perm.principal))
                continue
            seen.add(perm.key)

            source = inherited.get(perm.key)
            if source is None:
                surviving[perm.key] = perm
                continue

            report.entries.append(self._handle_redundant(ref, perm, source, report))

        if surviving:
            context = MappingProxyType({**inherited, **surviving})
        else:
            context = inherited

        for child in children:
            if not self._visit(child, context, report, cancel):
                return False
        return True

    def _handle_redundant(self, ref: EntityRef, perm: Permission, source: Permission,
                          report: OptimizeReport) -> ReportEntry:
        entry = ReportEntry(
            entity_id=ref.id,
            entity_name=ref.name,
            principal=perm.principal,
            role=perm.role,
            action=Action.WOULD_REMOVE,
            is_group=perm.is_group,
            propagate=perm.propagate,
            source_entity_id=source.entity_id,
            role_name=self.role_names.get(perm.role, ''),
        )
        if report.dry_run:
            logger.info('%s: would remove %s (role %s)', ref.name, perm.principal, perm.role)
            return entry

        try:
            self._remove(ref, perm)
            entry.action = Action.REMOVED
            logger.info('%s: removed %s (role %s)', ref.name, perm.principal, perm.role)
        except RemovalError as e:
            entry.action = Action.FAILED
            entry.error = str(e)
            report.errors.append(ReportError('remove', ref.id, ref.name, str(e),
                                             principal=perm.principal))
            logger.warning('%s: failed to remove %s: %s', ref.name, perm.principal, e)
        return entry

    def _read(self, fn, ref: EntityRef):
        try:
            return list(vif.retry_call(fn, ref,
                                       attempts=self.retry.attempts,
                                       delay=self.retry.delay,
                                       backoff=self.retry.backoff,
                                       no_retry=_PERMANENT_ERRORS))
        except Exception as e:
            raise SubtreeReadError(f'{getattr(fn, "__name__", "read")} failed for {ref.name}: {e}') from e

    def _remove(self, ref: EntityRef, perm: Permission) -> None:
        try:
            vif.retry_call(self.mutator.remove_permission, ref, perm.principal, perm.is_group,
                           attempts=self.retry.attempts,
                           delay=self.retry.delay,
                           backoff=self.retry.backoff,
                           no_retry=_PERMANENT_ERRORS)
        except NotFoundError:
            logger.debug('%s: grant for %s already absent', ref.name, perm.principal)
        except Exception as e:
            raise RemovalError(f'Removing {perm.principal} from {ref.name} failed: {e}') from e


def optimize(roots: Sequence[EntityRef], inventory: InventoryReader, mutator: PermissionMutator,
             dry_run: bool = False, cancel: Optional[CancelToken] = None,
             retry: Optional[RetryPolicy] = None,
             role_names: Optional[Dict[Any, str]] = None) -> OptimizeReport:
    """Convenience wrapper around PermissionDeduplicator.optimize"""
    dedup = PermissionDeduplicator(inventory, mutator, retry=retry, role_names=role_names)
    return dedup.optimize(roots, dry_run=dry_run, cancel=cancel)
