"""
Quick Start CLI - Azure Posture Audit

Menu-driven access to the audits, the VM sizing advisor, the tenant inventory,
remediation of the last audit and the demo environment. Credentials are read
from the environment, optionally loaded from a .env file.

Usage:
    pip install -e .
    python quick_start.py
"""

import sys
from typing import Dict, Optional

from azure.core.exceptions import AzureError
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

from posture_audit.agent import PostureAgent
from posture_audit.errors import FetchError, PostureAuditError
from posture_audit.inventory import collect_inventory, print_inventory_summary, write_inventory
from posture_audit.prompts import ConsolePrompter
from posture_audit.provisioner import DemoProvisioner, demo_names
from posture_audit.remediator import AzureRemediator
from posture_audit.scanner import AzureRecordSource
from posture_audit.settings import (
    APPLICATION_NAME,
    APPLICATION_VERSION,
    AZURE_CREDENTIAL_VARS,
    DEFAULT_LOCATION,
    DEMO_PREFIX,
    REPORTS_DIR,
    get_azure_credentials,
    get_client_options,
    missing_credentials,
)

MENU_ITEMS = [
    ("1", "🔍 NSG Audit", "Exposed inbound rules and management ports"),
    ("2", "🔍 Storage Audit", "HTTPS, TLS, public access, network and encryption score"),
    ("3", "📈 VM Sizing Advisor", "CPU / memory based right-sizing (also runs the VM rules)"),
    ("4", "👤 RBAC Audit", "Privileged and risky role assignments"),
    ("5", "📦 Tenant Inventory", "Every resource in every enabled subscription"),
    ("6", "🔧 Remediate Last Audit", "WILL MODIFY Azure resources after confirmation"),
    ("7", "🏗️  Provision Demo Environment", "Resource group, VNet, NSG and storage account"),
    ("8", "🗑️  Remove Demo Environment", "Deletes the demo resource group"),
    ("9", "🔌 Test Azure Connection", "Lists accessible resource groups"),
    ("0", "🚪 Exit", ""),
]


def check_prerequisites() -> Optional[Dict[str, str]]:
    """
    Verify the service principal variables are set.

    Returns:
        Dictionary with credentials, or None when any is missing
    """
    print("\n" + "="*70)
    print("🔍 CHECKING PREREQUISITES")
    print("="*70 + "\n")

    credentials = get_azure_credentials()

    for var_name, description in AZURE_CREDENTIAL_VARS.items():
        value = credentials.get(var_name)
        if value:
            # Never echo a full secret
            if 'SECRET' in var_name:
                masked = value[:4] + '...' + value[-2:] if len(value) > 12 else '***'
            else:
                masked = value[:12] + '...' if len(value) > 12 else value
            print(f"  ✅ {description:35s} {masked}")
        else:
            print(f"  ❌ {description:35s} NOT SET")

    print()

    missing = missing_credentials(credentials)
    if missing:
        print("⚠️  Missing required environment variables:")
        for var in missing:
            print(f"     - {var}")
        print("\n💡 Setup instructions:")
        print("     1. Create a .env file next to quick_start.py")
        print("     2. Fill in your service principal credentials")
        print("\n   Or set directly:")
        print(f'     export {missing[0]}="your-value-here"')
        print()
        return None

    print("✅ All prerequisites satisfied!\n")
    return credentials


def menu() -> str:
    print("\n" + "="*70)
    print(f"⚙️  {APPLICATION_NAME.upper()} - MAIN MENU")
    print("="*70 + "\n")
    for key, title, description in MENU_ITEMS:
        print(f"  {key}. {title}")
        if description:
            print(f"       - {description}")
    print("\n" + "="*70)
    return input("Enter your choice (0-9): ").strip()


def build_agent(credentials: Dict[str, str]) -> PostureAgent:
    sp = dict(
        subscription_id=credentials['AZURE_SUBSCRIPTION_ID'],
        tenant_id=credentials['AZURE_TENANT_ID'],
        client_id=credentials['AZURE_CLIENT_ID'],
        client_secret=credentials['AZURE_CLIENT_SECRET'],
    )
    return PostureAgent(
        source=AzureRecordSource(**sp),
        remediator=AzureRemediator(**sp),
        prompter=ConsolePrompter(),
    )


def run_audit(agent: PostureAgent, domain: str) -> None:
    """Read-only audit of one domain."""
    print(f"\n⚠️  This will NOT modify any Azure resources")
    try:
        chosen, scope = agent.select_scope(domain)
        if not chosen:
            print("\n⚠️  Audit cancelled")
            input("\nPress Enter to return to menu...")
            return
        report = agent.run_audit(domain, scope)
    except FetchError as e:
        print(f"\n❌ Audit failed: {e}")
        print("   Check your Azure credentials and permissions")
    else:
        totals = report.totals
        print(f"\n✅ Audit complete: {totals['subjects']} subject(s), "
              f"{totals['findings']} finding(s), {totals['skipped']} skipped")
        if totals['points_possible']:
            print(f"   Score: {totals['points_earned']}/{totals['points_possible']} "
                  f"({totals['percentage']:.1f}%)")
    input("\nPress Enter to return to menu...")


def vm_advisor(agent: PostureAgent) -> None:
    """VM audit followed by sizing advice on the same records."""
    try:
        chosen, scope = agent.select_scope('vm')
        if not chosen:
            print("\n⚠️  VM advisor cancelled")
            input("\nPress Enter to return to menu...")
            return
        agent.run_audit('vm', scope)
        agent.advise_vm_sizes(scope, records=agent.last_records)
    except FetchError as e:
        print(f"\n❌ VM advisor failed: {e}")
    input("\nPress Enter to return to menu...")


def tenant_inventory(agent: PostureAgent) -> None:
    """Inventory every subscription the service principal can read."""
    try:
        items = collect_inventory(agent.source.credential)
    except FetchError as e:
        print(f"\n❌ Inventory failed: {e}")
    else:
        print_inventory_summary(items)
        write_inventory(items, ('csv', 'json'), REPORTS_DIR)
    input("\nPress Enter to return to menu...")


def remediate_last(agent: PostureAgent) -> None:
    """Fix findings of the last audit, one confirmation per change."""
    if agent.last_report is None:
        print("\n⚠️  Run an audit first (options 1-4)")
        input("\nPress Enter to return to menu...")
        return

    print("\n" + "="*70)
    print(f"🔧 REMEDIATION: {agent.last_report.domain.upper()}")
    print("="*70)
    print("\n⚠️  IMPORTANT: every confirmed change is applied to Azure immediately.")
    print("   A rollback snapshot is written before each change.\n")
    agent.remediate()
    input("\nPress Enter to return to menu...")


def provision_demo(credentials: Dict[str, str]) -> None:
    prefix = input(f"Name prefix [{DEMO_PREFIX}]: ").strip() or DEMO_PREFIX
    location = input(f"Location [{DEFAULT_LOCATION}]: ").strip() or DEFAULT_LOCATION
    names = demo_names(prefix)

    print("\nThe following resources will be created:")
    for kind, name in names.items():
        print(f"  {kind:24s} {name}")
    if not ConsolePrompter().confirm("\nCreate these resources?"):
        print("\n⚠️  Provisioning cancelled")
        input("\nPress Enter to return to menu...")
        return

    provisioner = DemoProvisioner(
        subscription_id=credentials['AZURE_SUBSCRIPTION_ID'],
        tenant_id=credentials['AZURE_TENANT_ID'],
        client_id=credentials['AZURE_CLIENT_ID'],
        client_secret=credentials['AZURE_CLIENT_SECRET'],
    )
    result = provisioner.provision_demo_environment(prefix, location)
    if result['status'] != 'COMPLETE':
        print(f"\n❌ Provisioning failed: {result.get('error')}")
        print(f"   Completed steps: {', '.join(result['completed']) or 'none'}")
    input("\nPress Enter to return to menu...")


def remove_demo(credentials: Dict[str, str]) -> None:
    """Pick one of the tagged demo resource groups and delete it."""
    provisioner = DemoProvisioner(
        subscription_id=credentials['AZURE_SUBSCRIPTION_ID'],
        tenant_id=credentials['AZURE_TENANT_ID'],
        client_id=credentials['AZURE_CLIENT_ID'],
        client_secret=credentials['AZURE_CLIENT_SECRET'],
    )
    prompter = ConsolePrompter()
    group = prompter.choose_one(provisioner.list_demo_groups(), "Demo resource group to delete")
    if group and prompter.confirm(f"\n⚠️  Delete resource group '{group}' and ALL its resources?"):
        provisioner.remove_demo_environment(group)
    else:
        print("\n⚠️  Removal cancelled")
    input("\nPress Enter to return to menu...")


def test_azure(credentials: Dict[str, str]) -> None:
    """Authenticate and list resource groups to prove access."""
    print("\n" + "="*70)
    print("🔌 TESTING AZURE CONNECTION")
    print("="*70 + "\n")

    try:
        from azure.identity import ClientSecretCredential
        from azure.mgmt.resource import ResourceManagementClient

        print("📡 Authenticating...")
        credential = ClientSecretCredential(
            tenant_id=credentials['AZURE_TENANT_ID'],
            client_id=credentials['AZURE_CLIENT_ID'],
            client_secret=credentials['AZURE_CLIENT_SECRET']
        )

        print("🔍 Fetching resource groups...")
        resource_client = ResourceManagementClient(
            credential=credential,
            subscription_id=credentials['AZURE_SUBSCRIPTION_ID'],
            **get_client_options()
        )
        rgs = list(resource_client.resource_groups.list())

        print(f"\n✅ Azure connection successful!")
        print(f"\n📦 Found {len(rgs)} resource group(s):")
        for i, rg in enumerate(rgs[:10], 1):
            print(f"   {i}. 🌍 {rg.name} ({rg.location})")
        if len(rgs) > 10:
            print(f"   ... and {len(rgs) - 10} more")
        if not rgs:
            print("   ⚠️  No resource groups found")
            print("      The service principal may not have Reader access")

    except AzureError as e:
        print(f"\n❌ Azure connection failed: {e}")
        print("\n💡 Troubleshooting:")
        print("   - Verify credentials are correct")
        print("   - Ensure Service Principal has Reader role on subscription")
        print("   - Check tenant ID matches the subscription")

    print("\n" + "="*70)
    input("\nPress Enter to return to menu...")


def main():
    print("\n" + "="*70)
    print(f"🛡️  {APPLICATION_NAME.upper()}")
    print("="*70)
    print("\nRule-driven Azure security posture audits")
    print(f"\nVersion: {APPLICATION_VERSION}")
    print("="*70)

    credentials = check_prerequisites()
    if not credentials:
        print("❌ Cannot continue without required credentials")
        sys.exit(1)

    agent = build_agent(credentials)
    audits = {'1': 'nsg', '2': 'storage', '4': 'rbac'}

    while True:
        try:
            choice = menu()

            if choice in audits:
                run_audit(agent, audits[choice])
            elif choice == '3':
                vm_advisor(agent)
            elif choice == '5':
                tenant_inventory(agent)
            elif choice == '6':
                remediate_last(agent)
            elif choice == '7':
                provision_demo(credentials)
            elif choice == '8':
                remove_demo(credentials)
            elif choice == '9':
                test_azure(credentials)
            elif choice == '0':
                print("\n👋 Goodbye!\n")
                sys.exit(0)
            else:
                print("\n❌ Invalid choice. Please enter 0-9.")
                input("Press Enter to continue...")

        except KeyboardInterrupt:
            print("\n\n👋 Goodbye!")
            sys.exit(0)

        except (PostureAuditError, AzureError) as e:
            print(f"\n❌ Unexpected error: {e}")
            input("\nPress Enter to continue...")


if __name__ == "__main__":
    main()
