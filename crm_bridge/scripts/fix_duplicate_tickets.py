#!/usr/bin/env python3
"""
Analyze and fix duplicate WhatsApp tickets

Usage:
    python -m crm_bridge.scripts.fix_duplicate_tickets                 # analysis only
    python -m crm_bridge.scripts.fix_duplicate_tickets --apply --max 20
    python -m crm_bridge.scripts.fix_duplicate_tickets --phone 5511999998888 --apply
    python -m crm_bridge.scripts.fix_duplicate_tickets --webhook-bursts --hours 6
"""
import argparse
import sys

from dotenv import load_dotenv
load_dotenv()

from crm_bridge.services.duplicates import DuplicateTicketService


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Duplicate WhatsApp ticket repair")
    parser.add_argument("--days", type=int, default=None, help="Analysis window in days")
    parser.add_argument("--phone", type=str, default=None, help="Fix only this phone")
    parser.add_argument("--apply", action="store_true", help="Write changes (default is dry-run)")
    parser.add_argument("--max", type=int, default=50, dest="max_fix", help="Maximum groups to fix")
    parser.add_argument("--keep-messages", action="store_true", help="Do not move messages to the kept ticket")
    parser.add_argument("--webhook-bursts", action="store_true", help="Show ticket creation bursts")
    parser.add_argument("--hours", type=int, default=2, help="Burst analysis window in hours")
    return parser.parse_args(argv)


def print_analysis(service: DuplicateTicketService, days: int) -> None:
    analysis = service.analyze(days)
    print(f"\n📊 {analysis.summary}")
    for group in analysis.duplicate_groups[:20]:
        marker = "✅" if group.fixable else "⚠️ "
        print(f"  {marker} {group.formatted_phone}: {group.count} tickets "
              f"({group.open_count} open), keep {group.keep_ticket_id}")
    if len(analysis.duplicate_groups) > 20:
        print(f"  ... {len(analysis.duplicate_groups) - 20} more groups")


def print_bursts(service: DuplicateTicketService, hours: int) -> None:
    report = service.analyze_webhook_behavior(hours)
    print(f"\n⏱️  {report.total_tickets} WhatsApp tickets in the last {hours}h "
          f"({report.bucket_minutes}-minute buckets)")
    for bucket, count in report.buckets.items():
        flag = " 🚨" if bucket in report.suspicious_buckets else ""
        print(f"  {bucket}: {count}{flag}")
    if report.is_suspicious:
        print(f"\n🚨 {len(report.suspicious_buckets)} buckets above {report.threshold} tickets: "
              "check for webhook redelivery")
    else:
        print("\n✅ No suspicious bursts")


def main(argv=None) -> int:
    args = parse_args(argv)
    dry_run = not args.apply

    print("=" * 60)
    print("🧹 Duplicate WhatsApp tickets")
    print("=" * 60)
    print(f"Mode: {'DRY-RUN' if dry_run else 'APPLY'}")
    print("=" * 60)

    service = DuplicateTicketService()

    try:
        if args.webhook_bursts:
            print_bursts(service, args.hours)
            return 0

        if args.phone:
            summary = service.fix(args.phone, dry_run=dry_run, move_messages=not args.keep_messages)
        else:
            print_analysis(service, args.days)
            if dry_run:
                print("\n💡 Run with --apply to close duplicates")
            summary = service.fix_all(dry_run=dry_run, max_fix=args.max_fix, days_back=args.days)

        verb = "Would close" if dry_run else "Closed"
        print(f"\n✅ {verb} {summary.tickets_closed} tickets in {summary.groups_fixed} groups, "
              f"moved {summary.messages_moved} messages")
        for error in summary.errors:
            print(f"  ❌ {error}")
        return 1 if summary.errors else 0

    except Exception as e:
        print(f"\n❌ Error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
