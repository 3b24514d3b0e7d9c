"""
Application Configuration Settings

Central place for values that change between environments or over time:
Azure API limits, audit thresholds, output locations and workflow switches.

Credentials are never stored here. They are read from the environment
(optionally populated from a .env file by the CLI) through
get_azure_credentials().
"""

import os
from pathlib import Path
from typing import Dict, List, Optional


# =============================================================================
# AZURE CONFIGURATION
# =============================================================================

# Azure API timeouts (connect and read, applied to every management client)
AZURE_TIMEOUT = 60        # seconds

# Environment variables holding the service principal used by every workflow
AZURE_CREDENTIAL_VARS = {
    'AZURE_SUBSCRIPTION_ID': 'Azure Subscription ID',
    'AZURE_TENANT_ID': 'Azure Tenant ID',
    'AZURE_CLIENT_ID': 'Service Principal Client ID',
    'AZURE_CLIENT_SECRET': 'Service Principal Secret',
}

# Default region for demo resources
DEFAULT_LOCATION = "eastus"

# Prefix for demo resource names (resource group, vnet, nsg, storage)
DEMO_PREFIX = "postureaudit"


# =============================================================================
# AUDIT CONFIGURATION
# =============================================================================

# Rule catalog shipped with the package
RULES_PATH = Path(__file__).parent / "config" / "rules.yaml"

# VM right-sizing thresholds (average over the metrics window)
CPU_LOW_THRESHOLD = 10.0       # percent; below this a VM is a downsize candidate
CPU_HIGH_THRESHOLD = 80.0      # percent; above this a VM is an upsize candidate
MEMORY_LOW_THRESHOLD = 10.0    # percent of memory still available

# Azure Monitor window used to compute the averages
METRICS_LOOKBACK_DAYS = 7
METRICS_INTERVAL = "PT1H"


# =============================================================================
# REPORTING CONFIGURATION
# =============================================================================

# Output locations (overridable from the environment)
REPORTS_DIR = os.getenv("POSTURE_REPORTS_DIR", "reports")
LOGS_DIR = os.getenv("POSTURE_LOGS_DIR", "logs")
ROLLBACK_SNAPSHOTS_DIR = os.getenv("POSTURE_SNAPSHOTS_DIR", "rollback_snapshots")

# File name prefix for report artifacts
REPORT_BASENAME = "posture_report"
INVENTORY_BASENAME = "resource_inventory"
SIZING_BASENAME = "vm_sizing"

# Date-only stamp in artifact names (one artifact per domain per day)
REPORT_DATE_FORMAT = "%Y%m%d"

# Formats written by default after an audit run
DEFAULT_REPORT_FORMATS = ('console', 'csv', 'json')

# Number of findings shown per severity on the console before truncating
MAX_FINDINGS_PER_SEVERITY = 25


# =============================================================================
# WORKFLOW CONFIGURATION
# =============================================================================

# Ask before every change made to Azure resources
REQUIRE_CONFIRMATION = True

# Snapshot resource configuration before remediating it
CREATE_ROLLBACK_SNAPSHOTS = True


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def get_azure_credentials() -> Dict[str, Optional[str]]:
    """
    Read the service principal credentials from the environment.

    Returns:
        Dictionary keyed by environment variable name; missing values are None
    """
    return {name: os.getenv(name) for name in AZURE_CREDENTIAL_VARS}


def missing_credentials(credentials: Dict[str, Optional[str]]) -> List[str]:
    """Names of the credential variables that are unset or empty."""
    return [name for name in AZURE_CREDENTIAL_VARS if not credentials.get(name)]


def get_client_options() -> dict:
    """Keyword arguments passed to every Azure management client."""
    return {
        'connection_timeout': AZURE_TIMEOUT,
        'read_timeout': AZURE_TIMEOUT,
    }


def get_azure_config() -> dict:
    """
    Get complete Azure configuration as dictionary.

    Returns:
        Dictionary with all Azure settings
    """
    return {
        'timeout': AZURE_TIMEOUT,
        'default_location': DEFAULT_LOCATION,
        'demo_prefix': DEMO_PREFIX,
    }


def get_sizing_config() -> dict:
    """Thresholds used by the VM right-sizing advisor."""
    return {
        'low_cpu': CPU_LOW_THRESHOLD,
        'high_cpu': CPU_HIGH_THRESHOLD,
        'low_memory': MEMORY_LOW_THRESHOLD,
        'lookback_days': METRICS_LOOKBACK_DAYS,
    }


def get_reporting_config() -> dict:
    """
    Get complete reporting configuration as dictionary.

    Returns:
        Dictionary with output directories and artifact naming settings
    """
    return {
        'reports_dir': REPORTS_DIR,
        'logs_dir': LOGS_DIR,
        'snapshots_dir': ROLLBACK_SNAPSHOTS_DIR,
        'basename': REPORT_BASENAME,
        'date_format': REPORT_DATE_FORMAT,
        'formats': DEFAULT_REPORT_FORMATS,
    }


# =============================================================================
# VERSION INFORMATION
# =============================================================================

APPLICATION_VERSION = "1.0.0"
APPLICATION_NAME = "Azure Posture Audit"
