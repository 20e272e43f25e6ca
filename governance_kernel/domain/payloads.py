"""
Operation payloads -- typed bodies of approval requests.

Each approval domain accepts exactly one payload kind. Payloads are frozen
dataclasses tagged by a ``kind`` class attribute; ``amount`` is the monetary
magnitude used by risk classification and auto-approval caps, when the
operation has one.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import ClassVar, Union


class PayloadKind(str, Enum):
    EXPORT = "export"
    PUBLICATION = "publication"
    MASTERDATA = "masterdata"
    ACCESS_CHANGE = "access_change"
    CONFIG_CHANGE = "config_change"
    FUND_OPERATION = "fund_operation"
    ACCOUNTING = "accounting"


@dataclass(frozen=True)
class ExportPayload:
    """File export to an external system (SIE, Fortnox, authorities)."""

    kind: ClassVar[PayloadKind] = PayloadKind.EXPORT

    export_format: str
    period: str | None = None
    item_count: int | None = None
    destination: str | None = None
    amount: Decimal | None = None


@dataclass(frozen=True)
class PublicationPayload:
    """Publishing a report or NAV figure to an audience."""

    kind: ClassVar[PayloadKind] = PayloadKind.PUBLICATION

    report_id: str
    period: str | None = None
    audience: tuple[str, ...] = ()
    amount: Decimal | None = None


@dataclass(frozen=True)
class MasterdataPayload:
    """Creating, changing or deleting a supplier, customer or cost center."""

    kind: ClassVar[PayloadKind] = PayloadKind.MASTERDATA

    entity_kind: str
    entity_id: str | None = None
    entity_name: str | None = None
    fields: dict[str, str] = field(default_factory=dict)
    amount: Decimal | None = None


@dataclass(frozen=True)
class AccessChangePayload:
    """Adding or removing users and changing their roles or access."""

    kind: ClassVar[PayloadKind] = PayloadKind.ACCESS_CHANGE

    target_user_id: str
    role: str | None = None
    previous_role: str | None = None
    resource: str | None = None
    amount: Decimal | None = None


@dataclass(frozen=True)
class ConfigChangePayload:
    """Changing integrations, policies or approval rules."""

    kind: ClassVar[PayloadKind] = PayloadKind.CONFIG_CHANGE

    setting_key: str
    previous_value: str | None = None
    new_value: str | None = None
    amount: Decimal | None = None


@dataclass(frozen=True)
class FundOperationPayload:
    """Subscriptions, redemptions and NAV changes on a fund."""

    kind: ClassVar[PayloadKind] = PayloadKind.FUND_OPERATION

    fund_id: str
    amount: Decimal | None = None
    currency: str = "SEK"
    investor_id: str | None = None
    share_class: str | None = None


@dataclass(frozen=True)
class AccountingPayload:
    """Chart-of-accounts and other ledger structure changes."""

    kind: ClassVar[PayloadKind] = PayloadKind.ACCOUNTING

    change_summary: str
    accounts: tuple[str, ...] = ()
    amount: Decimal | None = None


OperationPayload = Union[
    ExportPayload,
    PublicationPayload,
    MasterdataPayload,
    AccessChangePayload,
    ConfigChangePayload,
    FundOperationPayload,
    AccountingPayload,
]

PAYLOAD_TYPES: dict[PayloadKind, type] = {
    PayloadKind.EXPORT: ExportPayload,
    PayloadKind.PUBLICATION: PublicationPayload,
    PayloadKind.MASTERDATA: MasterdataPayload,
    PayloadKind.ACCESS_CHANGE: AccessChangePayload,
    PayloadKind.CONFIG_CHANGE: ConfigChangePayload,
    PayloadKind.FUND_OPERATION: FundOperationPayload,
    PayloadKind.ACCOUNTING: AccountingPayload,
}
