#!/usr/bin/env python3
# conftest.py - VIADMIN Pytest Configuration and Fixtures
# Version 1.0 - October 2026
# Author - VIADMIN Core Team
# Shared fixtures for all test modules

import pytest
import os
import sys
import tempfile
from configparser import ConfigParser
from unittest.mock import MagicMock

# Add parent directory to path for imports
parent_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, parent_dir)

import vifunctions as vif
from Tools.permission_dedup import EntityRef, Permission, NotFoundError

#==============================================================================
# FAKE COLLABORATORS
#==============================================================================

class FakeInventory:
    """
    In-memory inventory tree

    tree: {entity_id: [child_id, ...]}
    perms: {entity_id: [(principal, role), ...]} or Permission objects
    read_failures: {entity_id: exception} raised by get_permissions
    children_failures: {entity_id: exception} raised by get_children
    """

    def __init__(self, tree, perms=None, read_failures=None, children_failures=None):
        self.tree = tree
        self.perms = {}
        for entity_id, grants in (perms or {}).items():
            self.perms[entity_id] = [self._to_permission(entity_id, g) for g in grants]
        self.read_failures = dict(read_failures or {})
        self.children_failures = dict(children_failures or {})
        self.calls = []

    @staticmethod
    def _to_permission(entity_id, grant):
        if isinstance(grant, Permission):
            return grant
        principal, role = grant
        return Permission(principal=principal, role=role, propagate=True, entity_id=entity_id)

    def ref(self, entity_id):
        return EntityRef(id=entity_id, name=entity_id)

    def get_children(self, ref):
        self.calls.append(('children', ref.id))
        if ref.id in self.children_failures:
            raise self.children_failures[ref.id]
        if ref.id not in self.tree and ref.id not in self.perms:
            raise NotFoundError(f'{ref.id} not found')
        return [self.ref(c) for c in self.tree.get(ref.id, [])]

    def get_permissions(self, ref):
        self.calls.append(('permissions', ref.id))
        if ref.id in self.read_failures:
            raise self.read_failures[ref.id]
        return list(self.perms.get(ref.id, []))

    def remove(self, entity_id, principal):
        self.perms[entity_id] = [p for p in self.perms.get(entity_id, []) if p.principal != principal]


class RecordingMutator:
    """Records removals and applies them to a FakeInventory"""

    def __init__(self, inventory=None, failures=None):
        self.inventory = inventory
        self.failures = dict(failures or {})
        self.calls = []

    def remove_permission(self, ref, principal, is_group):
        self.calls.append((ref.id, principal, is_group))
        failure = self.failures.get((ref.id, principal))
        if failure is not None:
            raise failure
        if self.inventory is not None:
            self.inventory.remove(ref.id, principal)

#==============================================================================
# FIXTURES - Collaborators
#==============================================================================

@pytest.fixture
def scenario_inventory():
    """Root{(alice,Admin)} -> Folder{(alice,Admin),(bob,ReadOnly)} -> VM{(alice,Admin)}"""
    return FakeInventory(
        tree={'Root': ['Folder'], 'Folder': ['VM'], 'VM': []},
        perms={
            'Root': [('alice', 'Admin')],
            'Folder': [('alice', 'Admin'), ('bob', 'ReadOnly')],
            'VM': [('alice', 'Admin')],
        },
    )


@pytest.fixture
def make_inventory():
    return FakeInventory


@pytest.fixture
def recording_mutator():
    return RecordingMutator

#==============================================================================
# FIXTURES - Mock pyVmomi objects
#==============================================================================

@pytest.fixture
def mock_si():
    """Create a mock ServiceInstance with an AuthorizationManager"""
    si = MagicMock()
    content = MagicMock()
    si.RetrieveContent.return_value = content
    si.content = content

    role_admin = MagicMock(roleId=-1)
    role_admin.name = 'Admin'
    role_ro = MagicMock(roleId=-2)
    role_ro.name = 'ReadOnly'
    content.authorizationManager.roleList = [role_admin, role_ro]
    content.authorizationManager.RetrieveEntityPermissions.return_value = []

    root_folder = MagicMock(_moId='group-d1')
    root_folder.name = 'Datacenters'
    content.rootFolder = root_folder

    return si

#==============================================================================
# FIXTURES - File System and Output
#==============================================================================

@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files"""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture(autouse=True)
def isolated_vif(temp_dir, monkeypatch):
    """Keep vifunctions output, config and sessions out of the user's home"""
    monkeypatch.setattr(vif, 'logfiles', [os.path.join(temp_dir, 'test.log')])
    monkeypatch.setattr(vif, 'console_output', False)
    monkeypatch.setattr(vif, 'config', ConfigParser())
    monkeypatch.setattr(vif, 'configini', os.path.join(temp_dir, 'missing.ini'))
    monkeypatch.setattr(vif, 'creds', os.path.join(temp_dir, 'creds.txt'))
    monkeypatch.setattr(vif, '_password', None)
    vif.sis.clear()
    vif.sisvc.clear()
    yield
    vif.sis.clear()
    vif.sisvc.clear()


@pytest.fixture
def temp_config_ini(temp_dir):
    """Create a temporary config.ini file"""
    config_path = os.path.join(temp_dir, 'config.ini')

    content = """[VCENTER]
host = vcsa-01a.site-a.vcf.lab
user = administrator@vsphere.local

[PERMISSIONS]
roots = Datacenter-A/vm
    #Datacenter-A/vm/Retired
    Datacenter-A/host
retry_attempts = 3
retry_delay = 0

[OUTPUT]
csv = #disabled
"""
    with open(config_path, 'w') as f:
        f.write(content)

    return config_path


@pytest.fixture
def temp_creds(temp_dir):
    """Create a temporary creds.txt file"""
    creds_path = os.path.join(temp_dir, 'creds.txt')
    with open(creds_path, 'w') as f:
        f.write('MOCK_PW_CHECK_VALUE\n')
    return creds_path

#==============================================================================
# MARKERS
#==============================================================================

def pytest_configure(config):
    """Configure custom markers"""
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
