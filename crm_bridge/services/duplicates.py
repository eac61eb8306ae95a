"""
Duplicate WhatsApp ticket analysis and repair

Webhook redeliveries and older flows that stored phones in different
formats left several open tickets per customer. Tickets are grouped by
canonical phone; in each group the most recent open ticket is kept and the
others are closed with merge metadata pointing at it.
"""
import time
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

from crm_bridge.config import get_settings
from crm_bridge.models.schemas import (
    DuplicateAnalysis,
    DuplicateFixSummary,
    DuplicateGroup,
    Ticket,
    TicketStatus,
    WebhookBurstReport,
)
from crm_bridge.repositories import TicketRepository, MessageRepository
from crm_bridge.utils.logger import get_logger
from crm_bridge.utils.phone import (
    UNKNOWN_PHONE,
    extract_phone_from_title,
    format_phone_display,
    normalize_phone,
    phone_lookup_variants,
)

settings = get_settings()
logger = get_logger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _created(ticket: Ticket) -> datetime:
    if ticket.created_at is None:
        return _EPOCH
    if ticket.created_at.tzinfo is None:
        return ticket.created_at.replace(tzinfo=timezone.utc)
    return ticket.created_at


def ticket_phone(ticket: Ticket) -> str:
    """Canonical customer phone of a ticket, or "unknown" """
    phone = ticket.customer_phone
    if phone:
        return normalize_phone(phone)
    return extract_phone_from_title(ticket.title) or UNKNOWN_PHONE


def is_fix_candidate(ticket: Ticket) -> bool:
    """Tickets fix() may keep or close: anything not already closed"""
    return TicketStatus.normalize(ticket.status) != TicketStatus.CLOSED


def choose_ticket_to_keep(tickets: List[Ticket]) -> Ticket:
    """Most recent open ticket, or the most recent ticket when none is open"""
    open_tickets = [t for t in tickets if t.is_open]
    return max(open_tickets or tickets, key=_created)


class DuplicateTicketService:
    """Finds and closes duplicate WhatsApp tickets"""

    def __init__(
        self,
        tickets: Optional[TicketRepository] = None,
        messages: Optional[MessageRepository] = None
    ):
        self.tickets = tickets or TicketRepository()
        self.messages = messages or MessageRepository()

    def analyze(self, days_back: Optional[int] = None) -> DuplicateAnalysis:
        """
        Group WhatsApp tickets created in the last `days_back` days by phone

        Returns:
            DuplicateAnalysis with one group per phone holding more than one ticket
        """
        days_back = days_back or settings.duplicate_window_days
        since = datetime.now(timezone.utc) - timedelta(days=days_back)
        tickets = self.tickets.list_whatsapp_since(since)

        by_phone: Dict[str, List[Ticket]] = defaultdict(list)
        for ticket in tickets:
            phone = ticket_phone(ticket)
            if phone != UNKNOWN_PHONE:
                by_phone[phone].append(ticket)

        groups = []
        for phone, items in by_phone.items():
            if len(items) < 2:
                continue

            items.sort(key=_created, reverse=True)
            keep = choose_ticket_to_keep(items)
            groups.append(DuplicateGroup(
                phone=phone,
                formatted_phone=format_phone_display(phone),
                count=len(items),
                open_count=sum(1 for t in items if t.is_open),
                active_count=sum(1 for t in items if is_fix_candidate(t)),
                keep_ticket_id=keep.id,
                tickets=[
                    {
                        "id": t.id,
                        "title": t.title,
                        "status": t.status,
                        "created_at": t.created_at,
                    }
                    for t in items
                ],
            ))

        groups.sort(key=lambda g: g.count, reverse=True)
        total_duplicates = sum(g.count - 1 for g in groups)
        fixable = sum(1 for g in groups if g.fixable)

        analysis = DuplicateAnalysis(
            days_back=days_back,
            whatsapp_tickets=len(tickets),
            total_duplicates=total_duplicates,
            fixable=fixable,
            duplicate_groups=groups,
            summary=(
                f"{len(groups)} phones with duplicate tickets, "
                f"{total_duplicates} duplicate tickets, {fixable} groups fixable "
                f"(last {days_back} days, {len(tickets)} WhatsApp tickets)"
            ),
        )
        logger.info(analysis.summary)
        return analysis

    def fix(self, phone: str, dry_run: bool = False, move_messages: bool = True) -> DuplicateFixSummary:
        """
        Close all but one non-closed ticket for `phone`

        Args:
            phone: Customer phone in any format
            dry_run: Only report what would be closed
            move_messages: Re-parent messages of closed tickets to the kept one
        """
        summary = DuplicateFixSummary(dry_run=dry_run, groups_processed=1)

        tickets = self.tickets.list_by_phone(phone_lookup_variants(phone))
        candidates = [t for t in tickets if is_fix_candidate(t)]
        if len(candidates) < 2:
            logger.info(f"No duplicates to fix for {phone}")
            return summary

        keep = choose_ticket_to_keep(candidates)
        for ticket in candidates:
            if ticket.id == keep.id:
                continue

            if dry_run:
                logger.info(f"[dry-run] Would close {ticket.id} ({ticket.status}) into {keep.id}")
                summary.tickets_closed += 1
                continue

            try:
                if move_messages:
                    summary.messages_moved += self.messages.move_to_ticket(ticket.id, keep.id)
                self.tickets.close_as_duplicate(ticket, keep.id)
                summary.tickets_closed += 1
            except Exception as e:
                logger.error(f"Failed to close duplicate {ticket.id}: {e}")
                summary.errors.append(f"{ticket.id}: {e}")

        if summary.tickets_closed:
            summary.groups_fixed = 1
        return summary

    def fix_all(
        self,
        dry_run: bool = False,
        max_fix: int = 50,
        days_back: Optional[int] = None,
        pause_seconds: float = 0.5
    ) -> DuplicateFixSummary:
        """Fix every fixable group found by analyze(), up to `max_fix` groups"""
        analysis = self.analyze(days_back)
        total = DuplicateFixSummary(dry_run=dry_run)

        for group in [g for g in analysis.duplicate_groups if g.fixable][:max_fix]:
            result = self.fix(group.phone, dry_run=dry_run)
            total.groups_processed += result.groups_processed
            total.groups_fixed += result.groups_fixed
            total.tickets_closed += result.tickets_closed
            total.messages_moved += result.messages_moved
            total.errors.extend(result.errors)

            if not dry_run and pause_seconds:
                time.sleep(pause_seconds)

        logger.info(
            f"{'[dry-run] ' if dry_run else ''}Fixed {total.groups_fixed}/{total.groups_processed} groups, "
            f"closed {total.tickets_closed} tickets, {len(total.errors)} errors"
        )
        return total

    def analyze_webhook_behavior(
        self,
        hours: int = 2,
        bucket_minutes: int = 5,
        threshold: int = 3
    ) -> WebhookBurstReport:
        """Count WhatsApp tickets per time bucket; buckets above `threshold` are suspicious"""
        since = datetime.now(timezone.utc) - timedelta(hours=hours)
        tickets = self.tickets.list_whatsapp_since(since)

        buckets: Dict[str, int] = defaultdict(int)
        for ticket in tickets:
            created = _created(ticket)
            if created == _EPOCH:
                continue
            floored = created.replace(
                minute=created.minute - created.minute % bucket_minutes,
                second=0,
                microsecond=0,
            )
            buckets[floored.strftime("%Y-%m-%d %H:%M")] += 1

        ordered = dict(sorted(buckets.items()))
        return WebhookBurstReport(
            hours=hours,
            bucket_minutes=bucket_minutes,
            threshold=threshold,
            total_tickets=len(tickets),
            buckets=ordered,
            suspicious_buckets={k: v for k, v in ordered.items() if v > threshold},
        )
