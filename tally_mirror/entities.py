"""
Master entity kinds and the record shape shared by all of them.

Every Tally master kind (groups, ledgers, stock items, ...) is reconciled the
same way. What differs between kinds is described once here, as an
``EntityKind`` descriptor: its table, its attribute columns and the payload
keys the Tally client uses for them.
"""
from __future__ import annotations
import copy
from dataclasses import dataclass, field, replace
from datetime import datetime, date
from typing import Any, Callable, Optional
from loguru import logger
from .parsers import (
    parse_text,
    parse_float,
    parse_int,
    parse_bool,
    parse_id,
    parse_tenant,
    parse_tally_date,
)


def _camel(snake: str) -> str:
    head, *rest = snake.split("_")
    return head + "".join(part.capitalize() for part in rest)


def _optional_int(value: Any) -> Optional[int]:
    return parse_int(value, default=None)


def _optional_float(value: Any) -> Optional[float]:
    return parse_float(value, default=None)


@dataclass(frozen=True)
class FieldSpec:
    """One kind-specific attribute column."""

    name: str
    sql_type: str = "TEXT"
    coerce: Callable[[Any], Any] = parse_text
    aliases: tuple[str, ...] = ()


def text_field(name: str, *aliases: str) -> FieldSpec:
    return FieldSpec(name, "TEXT", parse_text, aliases)


def bool_field(name: str, *aliases: str) -> FieldSpec:
    return FieldSpec(name, "BOOLEAN", parse_bool, aliases)


def amount_field(name: str, *aliases: str) -> FieldSpec:
    return FieldSpec(name, "DOUBLE PRECISION", _optional_float, aliases)


def int_field(name: str, *aliases: str) -> FieldSpec:
    return FieldSpec(name, "INTEGER", _optional_int, aliases)


def date_field(name: str, *aliases: str) -> FieldSpec:
    return FieldSpec(name, "DATE", parse_tally_date, aliases)


# Payload keys for the fields every kind shares
TENANT_KEYS = ("tenant_id", "tenantId", "cmp_id", "cmpId", "company_id", "companyId")
EXTERNAL_ID_KEYS = ("external_id", "externalId", "master_id", "masterId")
REVISION_KEYS = ("revision", "alter_id", "alterId")
GUID_KEYS = ("external_guid", "externalGuid", "guid")
USER_KEYS = ("user_id", "userId")
ACTIVE_KEYS = ("is_active", "isActive")
DELETED_KEYS = ("is_deleted", "isDeleted")
SYNC_TIME_KEYS = ("last_sync_time", "lastSyncTime", "last_sync_date", "lastSyncDate")


def _lookup(payload: dict, keys) -> tuple[bool, Any]:
    """Return (found, value) for the first key present in the payload."""
    for key in keys:
        if key in payload:
            return True, payload[key]
    return False, None


@dataclass(frozen=True)
class EntityKind:
    """
    Descriptor for one master kind.

    Attributes:
        name: Canonical kind name (e.g. 'ledger')
        table: Table name, without schema
        label: Plural used in log messages
        fields: Kind-specific attribute columns
        payload_prefix: Prefix the Tally client puts on field names
            (Ledger fields arrive as 'ledName', 'ledParent', ...)
        aliases: Other names callers use for this kind
    """

    name: str
    table: str
    label: str
    fields: tuple[FieldSpec, ...] = ()
    payload_prefix: str = ""
    aliases: tuple[str, ...] = ()

    @property
    def field_names(self) -> tuple[str, ...]:
        return tuple(f.name for f in self.fields)

    def payload_keys(self, spec: FieldSpec) -> tuple[str, ...]:
        """All payload keys that may carry the given field."""
        camel = _camel(spec.name)
        keys = [spec.name, camel]
        if self.payload_prefix:
            keys.append(self.payload_prefix + camel[0].upper() + camel[1:])
        keys.extend(spec.aliases)
        return tuple(dict.fromkeys(keys))

    @property
    def name_keys(self) -> tuple[str, ...]:
        keys = ["name"]
        if self.payload_prefix:
            keys.append(f"{self.payload_prefix}Name")
        return tuple(keys)

    def blank_attributes(self) -> dict[str, Any]:
        return {name: None for name in self.field_names}

    def coerce_attributes(self, payload: dict) -> dict[str, Any]:
        """Pick and coerce this kind's attributes out of a payload dict."""
        attributes = self.blank_attributes()
        for spec in self.fields:
            found, value = _lookup(payload, self.payload_keys(spec))
            if found:
                attributes[spec.name] = spec.coerce(value)
        return attributes


ENTITY_KINDS: dict[str, EntityKind] = {
    kind.name: kind
    for kind in (
        EntityKind(
            name="group",
            table="mst_group",
            label="groups",
            payload_prefix="grp",
            aliases=("groups",),
            fields=(
                text_field("parent"),
                text_field("primary_group"),
                text_field("nature"),
                text_field("alias"),
                text_field("code"),
                bool_field("is_revenue"),
                bool_field("is_reserved"),
                text_field("reserved_name"),
            ),
        ),
        EntityKind(
            name="ledger",
            table="mst_ledger",
            label="ledgers",
            payload_prefix="led",
            aliases=("ledgers",),
            fields=(
                text_field("parent"),
                text_field("primary_group"),
                text_field("alias"),
                text_field("code"),
                text_field("description"),
                text_field("mailing_name"),
                text_field("address", "ledAddress1"),
                text_field("state"),
                text_field("country"),
                text_field("pincode"),
                text_field("phone"),
                text_field("mobile"),
                text_field("email"),
                text_field("website"),
                amount_field("opening_balance"),
                text_field("currency_name"),
                text_field("gstin", "gstGstin"),
                text_field("gst_registration_type"),
                date_field("gst_registration_date"),
                bool_field("is_revenue"),
                bool_field("billwise_on", "ledBillwiseOn", "isBillWiseOn"),
                bool_field("is_cost_centre_on", "ledIsCostcentreOn"),
            ),
        ),
        EntityKind(
            name="stockitem",
            table="mst_stock_item",
            label="stock items",
            aliases=("stock_item", "stock_items", "stockitems"),
            fields=(
                text_field("parent"),
                text_field("category"),
                text_field("description"),
                text_field("mailing_name"),
                text_field("reserved_name"),
                text_field("base_units"),
                text_field("additional_units"),
                amount_field("opening_balance"),
                amount_field("opening_value"),
                amount_field("opening_rate"),
                text_field("costing_method"),
                text_field("valuation_method"),
                text_field("gst_type_of_supply"),
                text_field("hsn_code"),
                bool_field("batch_wise_on"),
                bool_field("cost_centers_on"),
            ),
        ),
        EntityKind(
            name="stockgroup",
            table="mst_stock_group",
            label="stock groups",
            aliases=("stock_group", "stock_groups", "stockgroups"),
            fields=(
                text_field("parent"),
                text_field("reserved_name"),
            ),
        ),
        EntityKind(
            name="stockcategory",
            table="mst_stock_category",
            label="stock categories",
            aliases=("stock_category", "stock_categories", "stockcategories"),
            fields=(
                text_field("parent"),
                text_field("reserved_name"),
            ),
        ),
        EntityKind(
            name="costcategory",
            table="mst_cost_category",
            label="cost categories",
            aliases=("cost_category", "cost_categories", "costcategories"),
            fields=(
                bool_field("allocate_revenue"),
                bool_field("allocate_non_revenue"),
            ),
        ),
        EntityKind(
            name="costcenter",
            table="mst_cost_centre",
            label="cost centres",
            aliases=("cost_center", "cost_centre", "cost_centers", "cost_centres", "costcentre"),
            fields=(
                text_field("parent"),
                text_field("category"),
            ),
        ),
        EntityKind(
            name="currency",
            table="mst_currency",
            label="currencies",
            aliases=("currencies",),
            fields=(
                text_field("symbol"),
                text_field("formal_name"),
                int_field("decimal_places"),
                text_field("decimal_separator"),
                text_field("suffix_symbol"),
            ),
        ),
        EntityKind(
            name="godown",
            table="mst_godown",
            label="godowns",
            aliases=("godowns",),
            fields=(
                text_field("parent"),
                text_field("address"),
                text_field("reserved_name"),
            ),
        ),
        EntityKind(
            name="taxunit",
            table="mst_tax_unit",
            label="tax units",
            aliases=("tax_unit", "tax_units", "taxunits"),
        ),
        EntityKind(
            name="units",
            table="mst_unit",
            label="units",
            payload_prefix="unit",
            aliases=("unit",),
            fields=(
                text_field("original_name"),
                bool_field("is_simple_unit", "simpleUnit"),
                text_field("reserved_name"),
            ),
        ),
        EntityKind(
            name="vouchertype",
            table="mst_voucher_type",
            label="voucher types",
            aliases=("voucher_type", "voucher_types", "vouchertypes"),
            fields=(
                text_field("parent"),
                text_field("numbering_method"),
            ),
        ),
    )
}

_KIND_ALIASES: dict[str, str] = {
    alias: kind.name
    for kind in ENTITY_KINDS.values()
    for alias in (kind.name, kind.table, *kind.aliases)
}


def get_entity_kind(kind: "EntityKind | str") -> EntityKind:
    """Resolve a kind descriptor by name or alias."""
    if isinstance(kind, EntityKind):
        return kind
    key = str(kind).strip().lower().replace("-", "_")
    canonical = _KIND_ALIASES.get(key) or _KIND_ALIASES.get(key.replace("_", ""))
    if canonical is None:
        raise ValueError(f"Unknown entity kind: {kind}. Valid: {list(ENTITY_KINDS.keys())}")
    return ENTITY_KINDS[canonical]


@dataclass
class MasterRecord:
    """
    One master record of any kind.

    Identity is (tenant_id, external_id) within a kind. ``id`` is the
    surrogate key assigned by the store on first insert and never changes.
    """

    tenant_id: Optional[str] = None
    external_id: Optional[int] = None
    revision: int = 0
    external_guid: Optional[str] = None
    name: Optional[str] = None
    attributes: dict[str, Any] = field(default_factory=dict)
    user_id: Optional[int] = None
    is_active: bool = True
    is_deleted: bool = False
    last_sync_time: Optional[datetime] = None
    entity_kind: Optional[str] = None
    id: Optional[int] = None

    @classmethod
    def from_payload(cls, kind: "EntityKind | str", payload: dict) -> "MasterRecord":
        """
        Build a record from a deserialized client payload.

        Missing or unparseable ids are left as None and an unparseable alter
        id is kept as sent; the reconciler rejects such records individually.
        A missing alter id means 0.
        """
        kind = get_entity_kind(kind)

        _, tenant = _lookup(payload, TENANT_KEYS)
        _, external_id = _lookup(payload, EXTERNAL_ID_KEYS)
        _, revision = _lookup(payload, REVISION_KEYS)
        _, guid = _lookup(payload, GUID_KEYS)
        _, name = _lookup(payload, kind.name_keys)
        _, user_id = _lookup(payload, USER_KEYS)
        _, is_active = _lookup(payload, ACTIVE_KEYS)
        _, is_deleted = _lookup(payload, DELETED_KEYS)
        _, sync_time = _lookup(payload, SYNC_TIME_KEYS)

        alter_id = parse_id(revision)
        if alter_id is not None:
            revision = alter_id
        elif parse_text(revision) is None:
            revision = 0
        else:
            logger.warning(f"Unparseable alter id {revision!r} for {kind.name}")

        record = cls(
            tenant_id=parse_tenant(tenant),
            external_id=parse_id(external_id),
            revision=revision,
            external_guid=parse_text(guid),
            name=parse_text(name),
            attributes=kind.coerce_attributes(payload),
            user_id=parse_id(user_id),
            is_active=parse_bool(is_active, default=True),
            is_deleted=parse_bool(is_deleted, default=False),
            last_sync_time=sync_time if isinstance(sync_time, datetime) else None,
            entity_kind=kind.name,
        )
        if record.external_id is None and external_id is not None:
            logger.warning(f"Unparseable master id {external_id!r} for {kind.name}")
        return record

    def copy(self) -> "MasterRecord":
        """Deep enough copy that mutating the result never touches self."""
        return replace(self, attributes=copy.deepcopy(self.attributes))

    def state(self) -> dict[str, Any]:
        """The fields an upsert writes, without sync time or surrogate id."""
        return {
            "tenant_id": self.tenant_id,
            "external_id": self.external_id,
            "revision": self.revision,
            "external_guid": self.external_guid,
            "name": self.name,
            "attributes": dict(self.attributes),
            "user_id": self.user_id,
            "is_active": self.is_active,
            "is_deleted": self.is_deleted,
        }

    def to_payload(self) -> dict[str, Any]:
        """Serialise using the keys the Tally client sends."""
        payload = {
            "id": self.id,
            "cmpId": self.tenant_id,
            "masterId": self.external_id,
            "alterId": self.revision,
            "guid": self.external_guid,
            "name": self.name,
            "userId": self.user_id,
            "isActive": self.is_active,
            "isDeleted": self.is_deleted,
            "lastSyncTime": self.last_sync_time.isoformat() if self.last_sync_time else None,
        }
        for key, value in self.attributes.items():
            payload[_camel(key)] = value.isoformat() if isinstance(value, date) else value
        return payload
