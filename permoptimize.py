#!/usr/bin/env python3
# permoptimize.py - VIADMIN Permission Optimizer
# Version 1.0 - October 2026
# Author - VIADMIN Core Team
# Removes explicit vCenter permissions already granted on an ancestor entity

"""
Permission Optimizer

Scans one or more vCenter inventory subtrees and removes permissions that
duplicate a (principal, role) grant already held by an ancestor on the same
path. vCenter propagation keeps effective access unchanged.

Usage:
    python3 permoptimize.py                               # Roots from config.ini
    python3 permoptimize.py --roots Datacenter-A/vm/Prod  # Specific inventory path
    python3 permoptimize.py --roots group-v3 --dry-run    # Preview by managed object id
    python3 permoptimize.py --dry-run --csv redundant.csv # Export the report

Configuration (~/viadmin/config.ini):
    [VCENTER]
    host = vcsa-01a.site-a.vcf.lab
    user = administrator@vsphere.local

    [PERMISSIONS]
    roots = Datacenter-A/vm
        Datacenter-A/host
    retry_attempts = 3
    retry_delay = 2

    [OUTPUT]
    csv = /tmp/permoptimize.csv
"""

import sys
import signal
import logging
import argparse
import threading

import vifunctions as vif
from Tools.permission_dedup import (
    PermissionDeduplicator,
    RetryPolicy,
    RootResolutionError,
)
from Tools.vsphere_inventory import VsphereInventoryReader, VspherePermissionMutator
from Tools import report_export

#==============================================================================
# SCRIPT CONFIGURATION
#==============================================================================

SCRIPT_VERSION = '1.0'

EXIT_OK = 0
EXIT_ERRORS = 1
EXIT_CONFIG = 2

#==============================================================================
# HELPERS
#==============================================================================

def parse_args(argv=None):
    """Parse command line arguments"""
    parser = argparse.ArgumentParser(
        description='VIADMIN Permission Optimizer',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python3 permoptimize.py --dry-run                     Preview using roots from config.ini
  python3 permoptimize.py --roots / --dry-run           Scan the whole inventory
  python3 permoptimize.py --roots Datacenter-A/vm/Prod  Remove redundant permissions
        """
    )
    parser.add_argument('--roots', nargs='+',
                        help="Inventory paths, managed object ids, or '/' to scan from")
    parser.add_argument('--dry-run', action='store_true',
                        help='Report redundant permissions without removing them')
    parser.add_argument('--config',
                        help=f'Path to config.ini (default: {vif.configini})')
    parser.add_argument('--vcenter',
                        help='vCenter hostname (defaults to [VCENTER] host)')
    parser.add_argument('--user',
                        help=f'vCenter user (defaults to [VCENTER] user or {vif.vcuser})')
    parser.add_argument('--password',
                        help='vCenter password (defaults to creds.txt)')
    parser.add_argument('--csv',
                        help='Write the report entries to this CSV file')
    parser.add_argument('--json',
                        help='Write the full report to this JSON file')
    parser.add_argument('--retries', type=int,
                        help='Attempts per vCenter call (default: [PERMISSIONS] retry_attempts or 1)')
    parser.add_argument('--verbose', '-v', action='store_true',
                        help='Verbose output')
    parser.add_argument('--version', action='version',
                        version=f'%(prog)s {SCRIPT_VERSION}')
    return parser.parse_args(argv)


def build_retry_policy(args) -> RetryPolicy:
    """Combine --retries with the [PERMISSIONS] retry settings"""
    attempts = args.retries if args.retries is not None else vif.get_config_int('PERMISSIONS', 'retry_attempts', 1)
    delay = float(vif.get_config_value('PERMISSIONS', 'retry_delay', '2'))
    return RetryPolicy(attempts=max(1, attempts), delay=delay)


def install_cancel_handler(cancel: threading.Event):
    """Route Ctrl-C to the cancellation event so the partial report is still printed"""
    def handler(signum, frame):
        vif.write_output('Interrupt received - stopping after the current entity')
        cancel.set()
    return signal.signal(signal.SIGINT, handler)


def export_report(report, args):
    csv_path = args.csv or vif.get_config_value('OUTPUT', 'csv')
    json_path = args.json or vif.get_config_value('OUTPUT', 'json')

    if csv_path:
        rows = report_export.write_report_csv(report, csv_path)
        vif.write_output(f'CSV report written to {csv_path} ({rows} rows)')
    if json_path:
        report_export.write_report_json(report, json_path)
        vif.write_output(f'JSON report written to {json_path}')

#==============================================================================
# MAIN FUNCTION
#==============================================================================

def run(si, root_specs, dry_run=False, retry=None, cancel=None):
    """
    Resolve roots and run the deduplicator against a connected vCenter

    :param si: ServiceInstance
    :param root_specs: Inventory paths / managed object ids / '/'
    :raises RootResolutionError: if any root cannot be resolved
    :return: OptimizeReport
    """
    reader = VsphereInventoryReader(si)
    mutator = VspherePermissionMutator(si)

    roots = [reader.resolve_root(spec) for spec in root_specs]
    for root in roots:
        vif.write_output(f'Root: {root.name} ({root.id})')

    try:
        role_names = reader.role_names()
    except Exception as e:
        vif.write_output(f'WARNING: Could not read role list, showing role ids: {e}')
        role_names = {}

    dedup = PermissionDeduplicator(reader, mutator, retry=retry, role_names=role_names)
    return dedup.optimize(roots, dry_run=dry_run, cancel=cancel)


def main(argv=None):
    """Main entry point"""
    args = parse_args(argv)

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    vif.init(config_path=args.config)

    vif.write_output('=' * 60)
    vif.write_output(f'  VIADMIN Permission Optimizer {SCRIPT_VERSION}')
    vif.write_output('=' * 60)

    host = args.vcenter or vif.get_config_value('VCENTER', 'host')
    user = args.user or vif.get_config_value('VCENTER', 'user', vif.vcuser)
    password = args.password if args.password else vif.get_password()
    root_specs = args.roots or vif.get_config_list('PERMISSIONS', 'roots')

    if not host:
        vif.write_output('ERROR: No vCenter specified (use --vcenter or [VCENTER] host)')
        return EXIT_CONFIG
    if not root_specs:
        vif.write_output('ERROR: No roots specified (use --roots or [PERMISSIONS] roots)')
        return EXIT_CONFIG
    if not password:
        vif.write_output('ERROR: No password provided and creds.txt not found')
        return EXIT_CONFIG

    try:
        port = vif.get_config_int('VCENTER', 'port', vif.vcport)
        retry = build_retry_policy(args)
    except ValueError as e:
        vif.write_output(f'ERROR: Invalid configuration value: {e}')
        return EXIT_CONFIG

    if args.dry_run:
        vif.write_output('DRY RUN MODE - No permissions will be removed')

    si = vif.connect_vc(host, user, password, port=port)
    if si is None:
        return EXIT_ERRORS

    cancel = threading.Event()
    previous_handler = install_cancel_handler(cancel)
    try:
        report = run(si, root_specs, dry_run=args.dry_run, retry=retry, cancel=cancel)
    except RootResolutionError as e:
        vif.write_output(f'ERROR: {e}')
        return EXIT_CONFIG
    finally:
        signal.signal(signal.SIGINT, previous_handler)
        vif.disconnect_vcenters()

    report_export.print_report_table(report)
    export_report(report, args)

    vif.write_output('')
    vif.write_output('=' * 60)
    vif.write_output('Summary')
    vif.write_output('=' * 60)
    vif.write_output(f'  Entities visited: {report.visited}')
    if report.dry_run:
        vif.write_output(f'  Would remove: {report.would_remove_count}')
    else:
        vif.write_output(f'  Removed: {report.removed_count}')
        vif.write_output(f'  Failed: {report.failed_count}')
    vif.write_output(f'  Errors: {len(report.errors)}')
    if report.cancelled:
        vif.write_output('  Run was cancelled before completion')

    return EXIT_OK if report.ok else EXIT_ERRORS


if __name__ == '__main__':
    sys.exit(main())
