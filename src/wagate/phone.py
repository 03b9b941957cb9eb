"""
Phone number normalization.

Turns loosely formatted local numbers ("(11) 8765-4321", "+55 11 98765-4321")
into the canonical form used to address a protocol endpoint:
country code + area code + 9-digit mobile subscriber number.
"""

import re
from dataclasses import dataclass

from wagate.errors import InvalidNumberFormat

JID_SUFFIX = "@s.whatsapp.net"

_NON_DIGITS = re.compile(r"\D")


@dataclass(frozen=True)
class NumberingPlan:
    """Addressing rules for one country."""

    country_code: str
    area_code_length: int
    mobile_prefix: str
    subscriber_lengths: tuple = (8, 9)

    @property
    def mobile_length(self) -> int:
        return max(self.subscriber_lengths)


BRAZIL = NumberingPlan(country_code="55", area_code_length=2, mobile_prefix="9")


def normalize_number(raw: str, plan: NumberingPlan = BRAZIL) -> str:
    """
    Normalize a phone number to ``<country><area><subscriber>``.

    A 9-digit subscriber number starting with a doubled mobile prefix ("99...")
    loses one prefix digit, then any 8-digit subscriber number gets the mobile
    prefix prepended, so the result always carries exactly one mobile prefix
    in front of an 8-digit line number.

    Raises:
        InvalidNumberFormat: If the number (without country code) is not
            area code + 8 or 9 digits.
    """
    number = _NON_DIGITS.sub("", raw or "")

    if number.startswith(plan.country_code):
        number = number[len(plan.country_code):]

    valid_lengths = {plan.area_code_length + n for n in plan.subscriber_lengths}
    if len(number) not in valid_lengths:
        raise InvalidNumberFormat(
            f"Invalid number '{raw}': expected a {plan.area_code_length}-digit "
            f"area code followed by "
            f"{' or '.join(str(n) for n in plan.subscriber_lengths)} digits"
        )

    area_code = number[: plan.area_code_length]
    subscriber = number[plan.area_code_length:]

    if len(subscriber) == plan.mobile_length and subscriber.startswith(
        plan.mobile_prefix * 2
    ):
        subscriber = subscriber[len(plan.mobile_prefix):]

    if len(subscriber) == plan.mobile_length - len(plan.mobile_prefix):
        subscriber = plan.mobile_prefix + subscriber

    return plan.country_code + area_code + subscriber


def to_jid(raw: str, plan: NumberingPlan = BRAZIL) -> str:
    """Normalize a number and turn it into a protocol user address."""
    return normalize_number(raw, plan) + JID_SUFFIX
