#!/usr/bin/env python3
"""
Check Supabase, the Evolution API and (optionally) a public webhook URL

Usage:
    python -m crm_bridge.scripts.check_connections
    python -m crm_bridge.scripts.check_connections --probe https://crm.example.com
    python -m crm_bridge.scripts.check_connections --probe https://crm.example.com --phone 5511999998888
"""
import argparse
import asyncio
import sys

from dotenv import load_dotenv
load_dotenv()

from crm_bridge.routes.health import check_all_dependencies, determine_overall_status
from crm_bridge.services.evolution import EvolutionAPIError, EvolutionClient, instance_name_of
from crm_bridge.services.webhook_probe import WebhookProbe


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Connectivity diagnostics")
    parser.add_argument("--probe", type=str, default=None, help="Base URL of a running receiver")
    parser.add_argument("--phone", type=str, default=None, help="Send a synthetic message for this phone")
    parser.add_argument("--instance", type=str, default=None, help="Instance name for the synthetic message")
    return parser.parse_args(argv)


async def main(argv=None) -> int:
    args = parse_args(argv)

    print("=" * 60)
    print("🩺 Connection diagnostics")
    print("=" * 60)

    dependencies = await check_all_dependencies()
    for name, dep in dependencies.items():
        icon = {"healthy": "✅", "degraded": "⚠️ "}.get(dep.status, "❌")
        latency = f" {dep.latency_ms}ms" if dep.latency_ms is not None else ""
        print(f"  {icon} {name}: {dep.status}{latency} {dep.error_message or ''}")

    overall = determine_overall_status(dependencies)

    if dependencies["evolution_api"].status == "healthy":
        client = EvolutionClient()
        try:
            for entry in await client.fetch_instances():
                name = instance_name_of(entry)
                if not name:
                    continue
                state = await client.connection_state(name)
                print(f"  📱 {name}: {(state.get('instance') or {}).get('state', 'unknown')}")
        except EvolutionAPIError as e:
            print(f"  ❌ Could not list instances: {e}")

    if args.probe:
        probe = WebhookProbe(args.probe)
        health = await probe.check_health()
        print(f"\n🌐 {args.probe}/webhook/health -> {health.get('status_code')} "
              f"{'✅' if health['ok'] else '❌ ' + str(health.get('error') or health.get('body'))}")
        if not health["ok"]:
            overall = "unhealthy"

        if args.phone and health["ok"]:
            result = await probe.send_test_message(args.phone, instance=args.instance)
            body = result.get("body") or {}
            ticket = body.get("ticket_id") if isinstance(body, dict) else None
            print(f"📨 Test message -> {result.get('status_code')} ticket={ticket}")
            if not result["ok"]:
                overall = "unhealthy"

    print("\n" + "=" * 60)
    print(f"Overall: {overall}")
    print("=" * 60)
    return 0 if overall != "unhealthy" else 1


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
