#!/usr/bin/env python3
# vsphere_inventory.py - VIADMIN vSphere Inventory Adapters
# Version 1.0 - October 2026
# Author - VIADMIN Core Team
# pyVmomi implementations of the inventory reader and permission mutator
# used by the permission deduplicator

import re
import logging
from typing import Dict, List

from pyVmomi import vim, vmodl

import vifunctions as vif
from Tools.permission_dedup import (
    EntityRef,
    Permission,
    NotFoundError,
    UnauthorizedError,
    RootResolutionError,
)

logger = logging.getLogger(__name__)

#==============================================================================
# CONFIGURATION
#==============================================================================

# Managed object ids look like group-v3, datacenter-21, domain-c8, vm-42, resgroup-v17
MOID_PATTERN = re.compile(r'^[a-z]+-[a-z]*\d+$')

_NOT_FOUND_FAULTS = (vim.fault.NotFound, vmodl.fault.ManagedObjectNotFound)
_UNAUTHORIZED_FAULTS = (vim.fault.NoPermission, vim.fault.NotAuthenticated)

#==============================================================================
# HELPER FUNCTIONS
#==============================================================================

def entity_ref(obj) -> EntityRef:
    """Build an EntityRef from a vim.ManagedEntity"""
    return EntityRef(id=obj._moId, name=obj.name, obj=obj)


def raise_translated(e: Exception, action: str, name: str):
    """Re-raise a pyVmomi fault as the deduplicator's collaborator error where one applies"""
    if isinstance(e, _NOT_FOUND_FAULTS):
        raise NotFoundError(f'{action} {name}: object not found') from e
    if isinstance(e, _UNAUTHORIZED_FAULTS):
        raise UnauthorizedError(f'{action} {name}: not authorized ({type(e).__name__})') from e
    raise e


def child_entities(obj) -> List:
    """
    Return the inventory children of a managed entity

    The walk follows the folder hierarchy so each entity is reached once:
    - Folder: childEntity
    - Datacenter: vmFolder, hostFolder, datastoreFolder, networkFolder
    - ComputeResource / ClusterComputeResource: host, resourcePool
    - VirtualApp: resourcePool, vm (vApp members are not in any VM folder)
    - ResourcePool: child pools that are not vApps (vApps are reached via their folder)
    - everything else (VirtualMachine, HostSystem, Datastore, Network) is a leaf
    """
    if isinstance(obj, vim.Folder):
        return list(obj.childEntity or [])

    if isinstance(obj, vim.Datacenter):
        return [f for f in (obj.vmFolder, obj.hostFolder, obj.datastoreFolder, obj.networkFolder)
                if f is not None]

    if isinstance(obj, vim.ComputeResource):
        children = list(obj.host or [])
        if obj.resourcePool is not None:
            children.append(obj.resourcePool)
        return children

    if isinstance(obj, vim.VirtualApp):
        return list(obj.resourcePool or []) + list(obj.vm or [])

    if isinstance(obj, vim.ResourcePool):
        return [rp for rp in (obj.resourcePool or []) if not isinstance(rp, vim.VirtualApp)]

    return []

#==============================================================================
# INVENTORY READER
#==============================================================================

class VsphereInventoryReader:
    """Reads inventory structure and directly assigned permissions through pyVmomi"""

    def __init__(self, si):
        self.si = si
        self.content = si.RetrieveContent()
        self.auth_manager = self.content.authorizationManager

    def get_children(self, ref: EntityRef) -> List[EntityRef]:
        try:
            return [entity_ref(child) for child in child_entities(ref.obj)]
        except vmodl.MethodFault as e:
            raise_translated(e, 'Reading children of', ref.name)

    def get_permissions(self, ref: EntityRef) -> List[Permission]:
        try:
            perms = self.auth_manager.RetrieveEntityPermissions(entity=ref.obj, inherited=False)
        except vmodl.MethodFault as e:
            raise_translated(e, 'Reading permissions of', ref.name)

        return [
            Permission(
                principal=p.principal,
                role=p.roleId,
                propagate=bool(p.propagate),
                entity_id=ref.id,
                is_group=bool(p.group),
            )
            for p in (perms or [])
        ]

    def role_names(self) -> Dict[int, str]:
        """Return {roleId: roleName}"""
        return {r.roleId: r.name for r in (self.auth_manager.roleList or [])}

    def resolve_root(self, spec: str) -> EntityRef:
        """
        Resolve a root reference to an EntityRef

        :param spec: '/' for the root folder, a managed object id (group-v3),
                     or an inventory path (Datacenter-A/vm/Production)
        :raises RootResolutionError: if nothing matches
        """
        spec = (spec or '').strip()
        if not spec:
            raise RootResolutionError('Empty root reference')

        try:
            if spec == '/':
                obj = self.content.rootFolder
            else:
                obj = None
                # Names like mgmt-dc01 also match the moid form
                if MOID_PATTERN.match(spec):
                    obj = vif.get_managed_entity_by_moid(self.content, spec)
                if obj is None:
                    obj = self.content.searchIndex.FindByInventoryPath(spec.strip('/'))
        except vmodl.MethodFault as e:
            raise RootResolutionError(f'Could not resolve root {spec}: {e.msg or type(e).__name__}') from e

        if obj is None:
            raise RootResolutionError(f'Root not found: {spec}')

        logger.debug('Resolved root %s to %s', spec, obj._moId)
        return entity_ref(obj)

#==============================================================================
# PERMISSION MUTATOR
#==============================================================================

class VspherePermissionMutator:
    """Removes permissions through the vCenter AuthorizationManager"""

    def __init__(self, si):
        self.auth_manager = si.RetrieveContent().authorizationManager

    def remove_permission(self, ref: EntityRef, principal: str, is_group: bool) -> None:
        try:
            self.auth_manager.RemoveEntityPermission(entity=ref.obj, user=principal, isGroup=is_group)
        except vmodl.MethodFault as e:
            raise_translated(e, f'Removing {principal} from', ref.name)
