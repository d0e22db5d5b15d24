"""
Mail log grouping and sorting.

The mail log shows one row per (contact, business day, item type). Rows from
MailItemRepository.list_items() are flat dicts; a nested ``contacts`` dict is
also accepted so API payloads can be grouped as-is.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from functools import cmp_to_key
from typing import Any

from mailroom.utils.timezone import parse_timestamp, to_business_date

# Display order inside a "Mixed (...)" label; unknown statuses go last
STATUS_PRIORITY = [
    "Picked Up",
    "Notified",
    "Received",
    "Forwarded",
    "Forward",
    "Scanned & Sent",
    "Scanned",
    "Scanned Document",
    "Pending",
    "Abandoned",
    "Abandoned Package",
]

SORT_KEYS = ("date", "status", "customer", "type", "quantity", "last_notified")


@dataclass
class MailGroup:
    group_key: str
    contact_id: str
    date: str
    item_type: str
    contact: dict[str, Any] = field(default_factory=dict)
    items: list[dict[str, Any]] = field(default_factory=list)
    total_quantity: int = 0
    statuses: list[str] = field(default_factory=list)
    display_status: str = ""
    latest_received_date: str = ""
    last_notified: str | None = None
    has_description: bool = False

    @property
    def customer_name(self) -> str:
        return self.contact.get("contact_person") or self.contact.get("company_name") or ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "groupKey": self.group_key,
            "contactId": self.contact_id,
            "contact": self.contact,
            "date": self.date,
            "itemType": self.item_type,
            "items": self.items,
            "totalQuantity": self.total_quantity,
            "statuses": self.statuses,
            "displayStatus": self.display_status,
            "latestReceivedDate": self.latest_received_date,
            "lastNotified": self.last_notified,
            "hasDescription": self.has_description,
        }


def _contact_of(item: dict[str, Any]) -> dict[str, Any]:
    nested = item.get("contacts")
    if isinstance(nested, dict):
        return nested
    return {
        key: item.get(key)
        for key in ("contact_id", "contact_person", "company_name", "mailbox_number")
        if item.get(key) is not None
    }


def _status_rank(status: str) -> int:
    try:
        return STATUS_PRIORITY.index(status)
    except ValueError:
        return len(STATUS_PRIORITY)


def display_status_for(statuses: list[str]) -> str:
    if len(statuses) == 1:
        return statuses[0]
    ordered = sorted(statuses, key=_status_rank)
    return f"Mixed ({', '.join(ordered)})"


def _later(a: str | None, b: str | None) -> str | None:
    if not a:
        return b
    if not b:
        return a
    return a if parse_timestamp(a) >= parse_timestamp(b) else b


def group_mail_items(items: list[dict[str, Any]]) -> list[MailGroup]:
    """
    Group mail items by contact, business day and item type.

    Groups come back in first-seen order; quantities are summed (a missing
    quantity counts as 1).
    """
    groups: dict[str, MailGroup] = {}

    for item in items:
        received = item["received_date"]
        day = to_business_date(received).isoformat()
        group_key = f"{item['contact_id']}|{day}|{item['item_type']}"

        group = groups.get(group_key)
        if group is None:
            group = MailGroup(
                group_key=group_key,
                contact_id=item["contact_id"],
                date=day,
                item_type=item["item_type"],
                contact=_contact_of(item),
                latest_received_date=received,
            )
            groups[group_key] = group

        group.items.append(item)
        group.total_quantity += item.get("quantity") or 1
        if item["status"] not in group.statuses:
            group.statuses.append(item["status"])
        if item.get("description"):
            group.has_description = True
        group.latest_received_date = _later(group.latest_received_date, received) or received
        group.last_notified = _later(group.last_notified, item.get("last_notified"))

    for group in groups.values():
        group.display_status = display_status_for(group.statuses)

    return list(groups.values())


def _compare(a: Any, b: Any) -> int:
    return (a > b) - (a < b)


def _primary(group: MailGroup, key: str) -> Any:
    if key == "date":
        return parse_timestamp(group.latest_received_date)
    if key == "status":
        return group.display_status.lower()
    if key == "customer":
        return group.customer_name.lower()
    if key == "type":
        return group.item_type.lower()
    if key == "quantity":
        return group.total_quantity
    return parse_timestamp(group.last_notified) if group.last_notified else None


def sort_groups(groups: list[MailGroup], key: str = "date", direction: str = "desc") -> list[MailGroup]:
    """
    Sort mail log groups.

    Args:
        groups: Output of group_mail_items()
        key: One of SORT_KEYS
        direction: "asc" or "desc"

    Ties fall back to customer name, then group key, always ascending.
    Groups never notified sort last for ``last_notified`` in either direction.
    """
    if key not in SORT_KEYS:
        raise ValueError(f"Invalid sort key: {key}")
    if direction not in ("asc", "desc"):
        raise ValueError(f"Invalid sort direction: {direction}")

    sign = 1 if direction == "asc" else -1

    def comparator(a: MailGroup, b: MailGroup) -> int:
        first, second = _primary(a, key), _primary(b, key)
        if first is None or second is None:
            if first is None and second is not None:
                return 1
            if second is None and first is not None:
                return -1
            result = 0
        else:
            result = sign * _compare(first, second)

        if result == 0:
            result = _compare(a.customer_name.lower(), b.customer_name.lower())
        if result == 0:
            result = _compare(a.group_key, b.group_key)
        return result

    return sorted(groups, key=cmp_to_key(comparator))
