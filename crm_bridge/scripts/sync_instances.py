#!/usr/bin/env python3
"""
Compare evolution_instances with the Evolution API, or rename an instance

Usage:
    python -m crm_bridge.scripts.sync_instances
    python -m crm_bridge.scripts.sync_instances --rename old-name new-name
"""
import argparse
import asyncio
import sys

from dotenv import load_dotenv
load_dotenv()

from crm_bridge.services.instances import InstanceMaintenance


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Evolution instance reconciliation")
    parser.add_argument("--rename", nargs=2, metavar=("OLD", "NEW"), help="Rename an instance")
    return parser.parse_args(argv)


async def main(argv=None) -> int:
    args = parse_args(argv)

    print("=" * 60)
    print("🔄 Evolution instances")
    print("=" * 60)

    maintenance = InstanceMaintenance()

    try:
        if args.rename:
            old_name, new_name = args.rename
            updated = await maintenance.rename(old_name, new_name)
            print(f"\n✅ Renamed {old_name} -> {new_name} ({updated} open tickets updated)")
            return 0

        result = await maintenance.reconcile()
    except Exception as e:
        print(f"\n❌ Error: {e}")
        return 1

    for name in result.matched:
        print(f"  ✅ {name}: {result.remote_states.get(name)}")
    for name in result.missing_remote:
        print(f"  ❌ {name}: in database, not in Evolution")
    for name in result.missing_local:
        print(f"  ⚠️  {name}: in Evolution ({result.remote_states.get(name)}), not in database")

    return 0 if not result.missing_remote else 1


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
