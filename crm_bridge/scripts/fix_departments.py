#!/usr/bin/env python3
"""
Report and fix users and tickets with missing or inactive departments

Usage:
    python -m crm_bridge.scripts.fix_departments           # report only
    python -m crm_bridge.scripts.fix_departments --apply   # assign first active department to users
"""
import argparse
import sys

from dotenv import load_dotenv
load_dotenv()

from crm_bridge.models.schemas import DepartmentIssueKind
from crm_bridge.services.diagnostics import USER_ISSUES, DepartmentDiagnostics


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Department assignment diagnostics")
    parser.add_argument("--apply", action="store_true", help="Assign a department to flagged users")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)

    print("=" * 60)
    print("🏢 Department diagnostics")
    print("=" * 60)

    diagnostics = DepartmentDiagnostics()

    try:
        issues = diagnostics.check_issues()
    except Exception as e:
        print(f"\n❌ Error: {e}")
        return 1

    if not issues:
        print("\n✅ No department issues")
        return 0

    for kind in DepartmentIssueKind:
        found = [i for i in issues if i.kind == kind]
        if found:
            print(f"\n⚠️  {kind.value}: {len(found)}")
            for issue in found[:20]:
                print(f"    - {issue.name or issue.entity_id}: {issue.detail}")

    user_ids = [i.entity_id for i in issues if i.kind in USER_ISSUES]
    if not user_ids:
        return 0

    if not args.apply:
        print(f"\n💡 Run with --apply to assign a department to {len(user_ids)} users")
        return 0

    try:
        fixed = diagnostics.fix_issues(user_ids)
    except ValueError as e:
        print(f"\n❌ {e}")
        return 1

    print(f"\n✅ Assigned a department to {fixed} users")
    return 0


if __name__ == "__main__":
    sys.exit(main())
