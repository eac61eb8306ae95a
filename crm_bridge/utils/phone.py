"""
Phone number helpers for WhatsApp JIDs

Every module that needs to compare, store or send a phone number goes
through these functions, so tickets created by the webhook, by agents and
by older scripts all end up matching the same customer.

Canonical form: digits only, with country code (e.g. "5511999998888").
"""
import re
from typing import List, Optional

from crm_bridge.config import get_settings
from crm_bridge.models.schemas import PhoneInfo

settings = get_settings()

UNKNOWN_PHONE = "unknown"

_NON_DIGITS = re.compile(r"\D")
_TITLE_FORMATTED = re.compile(r"\(?\+?(\d{1,3})\)?\s*\(?(\d{2})\)?\s*(\d{4,5})[-\s]?(\d{4})")
_TITLE_DIGITS = re.compile(r"\+?\d{10,13}")


def _digits(value: str) -> str:
    return _NON_DIGITS.sub("", value or "")


def is_group_jid(jid: Optional[str]) -> bool:
    """Group chats and broadcast lists are not routed to tickets"""
    return bool(jid) and (jid.endswith("@g.us") or jid.endswith("@broadcast"))


def extract_phone_from_jid(jid: Optional[str]) -> Optional[str]:
    """
    Extract phone digits from a WhatsApp JID

    Args:
        jid: Remote JID such as "5511999998888@s.whatsapp.net"

    Returns:
        Digits of the phone number, or None for groups and invalid numbers
    """
    if not jid or is_group_jid(jid):
        return None

    user = jid.split("@", 1)[0]
    # Multi-device JIDs carry a ":<device>" suffix
    user = user.split(":", 1)[0]
    digits = _digits(user)

    if len(digits) < 10:
        return None
    return digits


def normalize_phone(phone: Optional[str], country_code: Optional[str] = None) -> str:
    """
    Normalize a phone number to canonical digits with country code

    National numbers get the country code prefixed: 10 digits (DDD + landline
    or pre-2016 mobile) and 11 digits with a leading 9 after the DDD.
    Empty input and the "unknown" marker are returned unchanged.
    """
    if not phone or phone == UNKNOWN_PHONE:
        return phone or UNKNOWN_PHONE

    digits = _digits(phone)
    if not digits:
        return phone

    country_code = country_code or settings.default_country_code
    if len(digits) == 10 or (len(digits) == 11 and digits[2] == "9"):
        return f"{country_code}{digits}"
    return digits


def phone_lookup_variants(phone: Optional[str]) -> List[str]:
    """
    All representations of a phone that stored rows may hold

    Older rows were written with "+", without country code, and for
    Brazilian mobiles with or without the ninth digit.
    """
    canonical = normalize_phone(phone)
    if canonical == UNKNOWN_PHONE or not canonical.isdigit():
        return [canonical]

    variants = [canonical, f"+{canonical}"]
    country_code = settings.default_country_code

    if canonical.startswith(country_code) and len(canonical) in (12, 13):
        national = canonical[len(country_code):]
        variants.append(national)

        if len(national) == 11 and national[2] == "9":
            short = national[:2] + national[3:]
            variants.extend([f"{country_code}{short}", f"+{country_code}{short}", short])
        elif len(national) == 10:
            with_nine = national[:2] + "9" + national[2:]
            variants.extend([f"{country_code}{with_nine}", f"+{country_code}{with_nine}", with_nine])

    return list(dict.fromkeys(variants))


def _classify(digits: str) -> tuple:
    if digits.startswith("55") and len(digits) == 13:
        return "brazilian_mobile", "BR"
    if digits.startswith("55") and len(digits) == 12:
        return "brazilian_landline", "BR"
    if digits.startswith("1") and len(digits) == 11:
        return "north_american", "US"
    if 10 <= len(digits) <= 15:
        return "international", None
    return "invalid", None


def format_phone_display(phone: Optional[str]) -> str:
    """Human readable phone, e.g. "+55 (11) 99999-8888" """
    digits = normalize_phone(phone)
    if not digits.isdigit():
        return digits

    kind, _ = _classify(digits)
    if kind == "brazilian_mobile":
        return f"+55 ({digits[2:4]}) {digits[4:9]}-{digits[9:]}"
    if kind == "brazilian_landline":
        return f"+55 ({digits[2:4]}) {digits[4:8]}-{digits[8:]}"
    if kind == "north_american":
        return f"+1 ({digits[1:4]}) {digits[4:7]}-{digits[7:]}"
    return f"+{digits}"


def describe_phone(jid: Optional[str], push_name: Optional[str] = None) -> PhoneInfo:
    """Build a PhoneInfo from a remote JID and the contact's push name"""
    raw = extract_phone_from_jid(jid)
    if raw is None:
        return PhoneInfo(
            phone=UNKNOWN_PHONE,
            formatted=UNKNOWN_PHONE,
            is_valid=False,
            format="invalid",
            jid=jid,
            contact_name=push_name,
        )

    digits = normalize_phone(raw)
    kind, country = _classify(digits)
    return PhoneInfo(
        phone=digits,
        formatted=format_phone_display(digits),
        is_valid=kind != "invalid",
        format=kind,
        country=country,
        jid=jid,
        contact_name=push_name,
    )


def format_for_sending(phone: str) -> str:
    """
    Phone in the form the Evolution API expects for "number"

    Raises:
        ValueError: If the phone has too few digits
    """
    digits = _digits(phone)
    if len(digits) < 10:
        raise ValueError(f"Invalid phone number: {phone!r}")
    return normalize_phone(digits)


def extract_phone_from_title(title: Optional[str]) -> Optional[str]:
    """Recover the customer phone from ticket titles written by older flows"""
    if not title:
        return None

    match = _TITLE_FORMATTED.search(title)
    if match:
        digits = "".join(match.groups())
        if len(digits) >= 12:
            return normalize_phone(digits)

    match = _TITLE_DIGITS.search(title)
    if match:
        return normalize_phone(match.group(0))
    return None
