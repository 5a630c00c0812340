#!/usr/bin/env python3
# report_export.py - VIADMIN Permission Report Output
# Version 1.0 - October 2026
# Author - VIADMIN Core Team
# Console table, JSON and CSV rendering of permission optimizer reports

import csv
import json
import datetime
from typing import Any, Dict, List

from prettytable import PrettyTable

from Tools.permission_dedup import Action, OptimizeReport, ReportEntry

#==============================================================================
# CONFIGURATION
#==============================================================================

CSV_FIELDS = [
    'entity_id', 'entity_name', 'principal', 'is_group', 'role', 'role_name',
    'propagate', 'source_entity_id', 'action', 'error',
]

ACTION_ICONS = {
    Action.REMOVED: '🔧',
    Action.WOULD_REMOVE: '⏭️',
    Action.FAILED: '❌',
}

#==============================================================================
# CONVERSION
#==============================================================================

def entry_to_dict(entry: ReportEntry) -> Dict[str, Any]:
    """Flatten a report entry into CSV/JSON friendly values"""
    return {
        'entity_id': entry.entity_id,
        'entity_name': entry.entity_name,
        'principal': entry.principal,
        'is_group': entry.is_group,
        'role': entry.role,
        'role_name': entry.role_name,
        'propagate': entry.propagate,
        'source_entity_id': entry.source_entity_id,
        'action': entry.action.value,
        'error': entry.error,
    }


def report_to_dict(report: OptimizeReport) -> Dict[str, Any]:
    return {
        'timestamp': datetime.datetime.now().isoformat(),
        'dry_run': report.dry_run,
        'cancelled': report.cancelled,
        'visited': report.visited,
        'summary': {
            'removed': report.removed_count,
            'would_remove': report.would_remove_count,
            'failed': report.failed_count,
            'errors': len(report.errors),
        },
        'entries': [entry_to_dict(e) for e in report.entries],
        'errors': [
            {
                'kind': err.kind,
                'entity_id': err.entity_id,
                'entity_name': err.entity_name,
                'principal': err.principal,
                'message': err.message,
            }
            for err in report.errors
        ],
    }


def report_to_json(report: OptimizeReport) -> str:
    return json.dumps(report_to_dict(report), indent=2, default=str)

#==============================================================================
# OUTPUT
#==============================================================================

def format_report_table(report: OptimizeReport) -> str:
    """Render the report entries as a PrettyTable string"""
    table = PrettyTable()
    table.field_names = ['Entity', 'Principal', 'Role', 'Action', 'Granted On']
    table.align = 'l'

    for entry in report.entries:
        role = entry.role_name or str(entry.role)
        principal = f'{entry.principal} (group)' if entry.is_group else entry.principal
        icon = ACTION_ICONS.get(entry.action, '❓')
        action = f'{icon} {entry.action.value}'
        if entry.error:
            action = f'{action}: {entry.error[:60]}'
        table.add_row([entry.entity_name, principal, role, action, entry.source_entity_id])

    return table.get_string()


def print_report_table(report: OptimizeReport, title: str = 'REDUNDANT PERMISSIONS'):
    """Print report entries and recorded errors"""
    print(f'\n==== {title} ====')
    if report.entries:
        print(format_report_table(report))
    else:
        print('  No redundant permissions found')

    if report.errors:
        print('\n==== ERRORS ====')
        for err in report.errors:
            print(f'  {err.kind.upper()}: {err.entity_name} ({err.entity_id}) - {err.message}')


def write_report_csv(report: OptimizeReport, path: str) -> int:
    """
    Write report entries to a CSV file

    :return: Number of rows written
    """
    rows: List[Dict[str, Any]] = [entry_to_dict(e) for e in report.entries]
    with open(path, 'w', newline='') as f:
        writer = csv.DictWriter(f, fieldnames=CSV_FIELDS)
        writer.writeheader()
        writer.writerows(rows)
    return len(rows)


def write_report_json(report: OptimizeReport, path: str):
    with open(path, 'w') as f:
        f.write(report_to_json(report))
        f.write('\n')
