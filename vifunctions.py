# vifunctions.py - VIADMIN Core Functions Library
# Version 1.0 - October 2026
# Author - VIADMIN Core Team
# Shared configuration, output, connection and retry helpers for the
# vSphere administration tools

import os
import datetime
import time
import logging
from configparser import ConfigParser
from pyVim import connect
from pyVmomi import vim

# Default logging level is WARNING (other levels are DEBUG, INFO, ERROR and CRITICAL)
logging.basicConfig(level=logging.WARNING)
logger = logging.getLogger(__name__)

#==============================================================================
# STATIC VARIABLES
#==============================================================================

home = os.path.expanduser('~')
viroot = f'{home}/viadmin'

configname = 'config.ini'
configini = f'{viroot}/{configname}'
creds = f'{viroot}/creds.txt'

logfile = 'permoptimize.log'
logfiles = [f'{viroot}/{logfile}']

vcuser = 'administrator@vsphere.local'
vcport = 443

sis = []  # all vCenter session instances
sisvc = {}  # vCenter session instances indexed by host name

config = ConfigParser()

_password = None

# Console output flag (set to False when output is already captured elsewhere)
console_output = True

#==============================================================================
# INITIALIZATION
#==============================================================================

def init(config_path=None, **kwargs):
    """
    Initialize the vifunctions module

    :param config_path: Path to config.ini (defaults to ~/viadmin/config.ini)
    :param kwargs:
        creds_path - path to the password file
        log_path - log file to write to instead of the default
    :return: True if a config file was read
    """
    global configini, creds, logfiles, _password

    if config_path:
        configini = config_path
    if kwargs.get('creds_path'):
        creds = kwargs['creds_path']
        _password = None
    if kwargs.get('log_path'):
        logfiles = [kwargs['log_path']]

    loaded = False
    if os.path.isfile(configini):
        config.read(configini)
        loaded = True
        logger.debug('Read configuration from %s', configini)
    else:
        logger.debug('No configuration file at %s', configini)

    return loaded

#==============================================================================
# CONFIG HELPER FUNCTIONS
#==============================================================================

def get_config_list(section: str, option: str, fallback: list = None) -> list:
    """
    Get a config option as a list, filtering out commented lines.

    Multiline values are split on newlines, single-line values on commas.
    Lines starting with '#' or ';' are treated as if they don't exist.

    :param section: Config section name (e.g., 'PERMISSIONS')
    :param option: Config option name (e.g., 'roots')
    :param fallback: Default value if option doesn't exist (default: empty list)
    :return: List of non-commented, non-empty values

    Example:
        # [PERMISSIONS]
        # roots = Datacenter-A/vm/Production
        #   #Datacenter-A/vm/Retired
        #   Datacenter-B/host

        get_config_list('PERMISSIONS', 'roots')
        # Returns: ['Datacenter-A/vm/Production', 'Datacenter-B/host']
    """
    if fallback is None:
        fallback = []

    if not config.has_option(section, option):
        return fallback

    raw_value = config.get(section, option)
    if not raw_value:
        return fallback

    if '\n' in raw_value:
        lines = raw_value.split('\n')
    else:
        lines = raw_value.split(',')

    result = []
    for line in lines:
        stripped = line.strip()
        if not stripped:
            continue
        if stripped.startswith('#') or stripped.startswith(';'):
            continue
        result.append(stripped)

    return result


def get_config_value(section: str, option: str, fallback: str = '') -> str:
    """
    Get a config option value, returning fallback if commented out.

    :param section: Config section name
    :param option: Config option name
    :param fallback: Default value if option doesn't exist or is commented
    :return: Config value or fallback
    """
    if not config.has_option(section, option):
        return fallback

    value = config.get(section, option).strip()

    if value.startswith('#') or value.startswith(';'):
        return fallback

    return value


def get_config_int(section: str, option: str, fallback: int = 0) -> int:
    """Get an integer config option, raising ValueError on a malformed value"""
    value = get_config_value(section, option)
    if not value:
        return fallback
    return int(value)

#==============================================================================
# PASSWORD FUNCTIONS
#==============================================================================

def get_password() -> str:
    """
    Get the vCenter password from creds.txt.

    The password is cached after first read.

    :return: Password string, or empty string if not found
    """
    global _password
    if _password is None:
        if os.path.isfile(creds):
            with open(creds, 'r') as f:
                _password = f.read().strip()
    return _password if _password else ''

#==============================================================================
# OUTPUT AND LOGGING
#==============================================================================

def write_output(msg, **kwargs):
    """
    Write output to log files and optionally to console

    :param msg: Message to write
    :param kwargs:
        logfile - specific logfile path
        console - override console output setting (True/False)
    """
    timestamp = datetime.datetime.now().strftime('%Y-%m-%d %H:%M:%S')
    formatted_msg = f'[{timestamp}] {msg}'

    lfile = kwargs.get('logfile', None)
    print_to_console = kwargs.get('console', console_output)

    targets = [lfile] if lfile else logfiles
    for lf in targets:
        try:
            os.makedirs(os.path.dirname(lf), exist_ok=True)
            with open(lf, 'a') as f:
                f.write(formatted_msg + '\n')
        except OSError as e:
            logger.debug('Error writing to %s: %s', lf, e)

    if print_to_console:
        print(formatted_msg)

#==============================================================================
# RETRY
#==============================================================================

def retry_call(fn, *args, attempts=1, delay=0.0, backoff=2.0, no_retry=(), **kwargs):
    """
    Call fn(*args, **kwargs), retrying on failure up to a bounded number of attempts

    :param attempts: Total attempts (1 means no retry)
    :param delay: Seconds to sleep before the first retry
    :param backoff: Multiplier applied to the delay after each retry
    :param no_retry: Exception types that are re-raised immediately
    :return: fn's return value; the last exception is re-raised when attempts run out
    """
    attempts = max(1, attempts)
    wait = delay
    for attempt in range(1, attempts + 1):
        try:
            return fn(*args, **kwargs)
        except Exception as e:
            if no_retry and isinstance(e, tuple(no_retry)):
                raise
            if attempt >= attempts:
                raise
            logger.debug('Attempt %d/%d of %s failed: %s',
                         attempt, attempts, getattr(fn, '__name__', fn), e)
            if wait > 0:
                time.sleep(wait)
            wait *= backoff

#==============================================================================
# VSPHERE OPERATIONS
#==============================================================================

def connect_vc(host, user, password=None, **kwargs):
    """
    Connect to a vCenter

    :param host: vCenter hostname
    :param user: Username
    :param password: Password (defaults to creds.txt)
    :return: ServiceInstance on success, None on failure
    """
    if password is None:
        password = get_password()

    port = kwargs.get('port', vcport)

    try:
        si = connect.SmartConnect(
            host=host,
            user=user,
            pwd=password,
            port=port,
            disableSslCertValidation=True
        )
    except Exception as e:
        write_output(f'Failed to connect to {host}: {e}')
        return None

    sisvc[host] = si
    sis.append(si)
    write_output(f'Connected to {host}')
    return si


def disconnect_vcenters():
    """Disconnect all vCenter sessions"""
    for si in sis:
        try:
            connect.Disconnect(si)
        except Exception as e:
            logger.debug('Error during disconnect: %s', e)
    sis.clear()
    sisvc.clear()


def get_all_objs(si_content, vimtype):
    """
    Method that populates objects of type vimtype such as
    vim.Folder, vim.Datacenter, vim.ClusterComputeResource, vim.VirtualMachine
    :param si_content: serviceinstance.content
    :param vimtype: VIM object type name (list)
    :return: dict of {object: name}
    """
    obj = {}
    container = si_content.viewManager.CreateContainerView(si_content.rootFolder, vimtype, True)
    try:
        for managed_object_ref in container.view:
            obj.update({managed_object_ref: managed_object_ref.name})
    finally:
        container.Destroy()
    return obj


def get_managed_entity_by_moid(si_content, moid):
    """
    Find a managed entity anywhere in the inventory by its managed object id

    :param si_content: serviceinstance.content
    :param moid: Managed object id (e.g. 'group-v3', 'vm-42')
    :return: vim.ManagedEntity or None
    """
    if si_content.rootFolder._moId == moid:
        return si_content.rootFolder
    for entity in get_all_objs(si_content, [vim.ManagedEntity]):
        if entity._moId == moid:
            return entity
    return None
