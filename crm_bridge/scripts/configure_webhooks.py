#!/usr/bin/env python3
"""
Point the webhook of every Evolution instance at this service

Usage:
    python -m crm_bridge.scripts.configure_webhooks --url https://crm.example.com/webhook/evolution
    python -m crm_bridge.scripts.configure_webhooks --instance atendimento
    python -m crm_bridge.scripts.configure_webhooks --check-only
"""
import argparse
import asyncio
import sys

from dotenv import load_dotenv
load_dotenv()

from crm_bridge.services.instances import InstanceMaintenance


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Configure Evolution API webhooks")
    parser.add_argument("--url", type=str, default=None, help="Webhook URL (default: WEBHOOK_PUBLIC_URL)")
    parser.add_argument("--events", nargs="+", default=None, help="Events to subscribe")
    parser.add_argument("--instance", type=str, default=None, help="Only this instance")
    parser.add_argument("--check-only", action="store_true", help="Verify without changing anything")
    return parser.parse_args(argv)


async def main(argv=None) -> int:
    args = parse_args(argv)

    print("=" * 60)
    print("🔗 Evolution API webhook configuration")
    print("=" * 60)

    maintenance = InstanceMaintenance()

    try:
        results = await maintenance.configure_webhooks(
            url=args.url,
            events=args.events,
            instance=args.instance,
            check_only=args.check_only,
        )
    except Exception as e:
        print(f"\n❌ Error: {e}")
        return 1

    if not results:
        print("\n⚠️  No instances found")
        return 1

    for result in results:
        if result.success:
            print(f"  ✅ {result.instance}: {result.url} ({', '.join(result.events)})")
        else:
            print(f"  ❌ {result.instance}: {result.error}")

    ok = sum(1 for r in results if r.success)
    print("\n" + "=" * 60)
    print(f"📊 {ok} ok, {len(results) - ok} failed")
    print("=" * 60)
    return 0 if ok == len(results) else 1


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
