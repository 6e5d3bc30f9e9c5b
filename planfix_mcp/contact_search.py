"""
Contact lookup for the ``planfix_search_contact`` tool.

Planfix contacts are entered inconsistently, so the lookup runs an ordered
cascade of single-filter ``contact/list`` requests (email, phone, full name,
translated name, five spellings of the telegram handle, then configured
custom fields) and stops at the first stage that returns a contact.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Protocol, Sequence, Tuple, Union

from .config import PlanfixFieldIds
from .custom_fields import CustomFieldConfig, extend_filters_with_custom_fields, validate_custom_field_args

logger = logging.getLogger("planfix_mcp.contact_search")

FILTER_NAME = 4001
FILTER_PHONE = 4003
FILTER_EMAIL = 4026
FILTER_TELEGRAM = 4226
FILTER_CUSTOM_FIELD = 4101

BASE_FIELDS = "id,name,midname,lastname,email,phone,description,group"
PAGE_SIZE = 100

_PHONE_RE = re.compile(r"[+\d\s\-()]{5,}", re.ASCII)

Filter = Dict[str, Any]
ContactUrlBuilder = Callable[[int], str]


class RequestClient(Protocol):
    def request(
        self,
        path: str,
        body: Optional[Dict[str, Any]] = None,
        method: str = "POST",
    ) -> Awaitable[Dict[str, Any]]: ...


def sanitize_phone(phone: Optional[str]) -> Optional[str]:
    """Return ``phone`` if it looks like a phone number, else None."""
    if not phone:
        return None
    if phone.startswith("@") or not _PHONE_RE.fullmatch(phone):
        return None
    return phone


def normalize_telegram(value: str) -> str:
    return value.removeprefix("@").lower()


def telegram_variants(telegram: str) -> List[Tuple[str, str]]:
    """Spellings of a handle to try, in order, as (stage name, value)."""
    stripped = telegram.removeprefix("@")
    return [
        ("telegram", stripped.lower()),
        ("telegram_with_at", f"@{stripped.lower()}"),
        ("telegram_original_case", stripped),
        ("telegram_original_case_with_at", telegram if telegram.startswith("@") else f"@{telegram}"),
        ("telegram_url", f"https://t.me/{stripped}"),
    ]


def _has_space(value: Optional[str]) -> bool:
    return bool(value) and " " in value.strip()


@dataclass
class ContactSearchInput:
    name: Optional[str] = None
    name_translated: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    telegram: Optional[str] = None
    custom_fields: List[Tuple[str, Any]] = field(default_factory=list)

    @classmethod
    def from_args(
        cls,
        args: Optional[Mapping[str, Any]],
        registry: Sequence[CustomFieldConfig] = (),
    ) -> "ContactSearchInput":
        """Build from raw tool arguments; custom fields are picked by ``arg_name``."""
        args = dict(args or {})

        def text(key: str, *aliases: str) -> Optional[str]:
            for k in (key, *aliases):
                value = args.get(k)
                if value is not None:
                    return str(value)
            return None

        extra: Dict[str, Any] = dict(args.get("custom_fields") or {})
        for cfg in registry:
            if cfg.arg_name in args and cfg.arg_name not in extra:
                extra[cfg.arg_name] = args[cfg.arg_name]

        return cls(
            name=text("name"),
            name_translated=text("name_translated", "nameTranslated"),
            phone=text("phone"),
            email=text("email"),
            telegram=text("telegram"),
            custom_fields=validate_custom_field_args(extra, registry),
        )


@dataclass
class ContactRecord:
    id: int
    name: Optional[str] = None
    lastname: Optional[str] = None
    telegram: Optional[str] = None
    custom_field_data: List[Dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_api(cls, data: Mapping[str, Any]) -> "ContactRecord":
        return cls(
            id=int(data.get("id") or 0),
            name=data.get("name"),
            lastname=data.get("lastname"),
            telegram=data.get("telegram"),
            custom_field_data=list(data.get("customFieldData") or []),
        )

    def custom_value(self, field_id: int) -> Any:
        for item in self.custom_field_data:
            if (item.get("field") or {}).get("id") == field_id:
                return item.get("value")
        return None


@dataclass
class ContactSearchResult:
    contact_id: int = 0
    url: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    error: Optional[str] = None
    telegram: Optional[str] = None

    @property
    def found(self) -> bool:
        return self.contact_id > 0

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "contactId": self.contact_id,
            "url": self.url,
            "firstName": self.first_name,
            "lastName": self.last_name,
            "error": self.error,
            "found": self.found,
            "telegram": self.telegram,
        }
        return {k: v for k, v in data.items() if v is not None}


@dataclass
class SearchStage:
    name: str
    filter: Filter
    verify_telegram: bool = False


@dataclass
class Matched:
    contact: ContactRecord
    telegram: str = ""


@dataclass
class NotFound:
    pass


@dataclass
class Failed:
    error: str


StageOutcome = Union[Matched, NotFound, Failed]


class ContactResolver:
    def __init__(
        self,
        client: RequestClient,
        field_ids: PlanfixFieldIds,
        contact_url: ContactUrlBuilder,
        contact_fields: Sequence[CustomFieldConfig] = (),
    ) -> None:
        self.client = client
        self.field_ids = field_ids
        self.contact_url = contact_url
        self.contact_fields = list(contact_fields)

    @property
    def fields(self) -> str:
        if self.field_ids.telegram_custom:
            return f"{BASE_FIELDS},{self.field_ids.telegram_custom}"
        if self.field_ids.telegram:
            return f"{BASE_FIELDS},telegram"
        return BASE_FIELDS

    def _telegram_filter(self, value: str) -> Optional[Filter]:
        if self.field_ids.telegram_custom:
            return {
                "type": FILTER_CUSTOM_FIELD,
                "field": self.field_ids.telegram_custom,
                "operator": "equal",
                "value": value,
            }
        if self.field_ids.telegram:
            return {"type": FILTER_TELEGRAM, "operator": "equal", "value": value}
        return None

    def build_stages(self, search: ContactSearchInput) -> List[SearchStage]:
        """Ordered stages applicable to ``search``."""
        stages: List[SearchStage] = []
        if search.email:
            stages.append(SearchStage("email", {"type": FILTER_EMAIL, "operator": "equal", "value": search.email}))
        phone = sanitize_phone(search.phone)
        if phone:
            stages.append(SearchStage("phone", {"type": FILTER_PHONE, "operator": "equal", "value": phone}))
        if _has_space(search.name):
            stages.append(
                SearchStage(
                    "name",
                    {"type": FILTER_NAME, "operator": "equal", "value": search.name},
                    verify_telegram=True,
                )
            )
        if _has_space(search.name_translated):
            stages.append(
                SearchStage(
                    "name_translated",
                    {"type": FILTER_NAME, "operator": "equal", "value": search.name_translated},
                    verify_telegram=True,
                )
            )
        if search.telegram and self.field_ids.telegram_configured:
            for stage_name, value in telegram_variants(search.telegram):
                tg_filter = self._telegram_filter(value)
                if tg_filter is not None:
                    stages.append(SearchStage(stage_name, tg_filter))

        custom_filters: List[Filter] = []
        extend_filters_with_custom_fields(custom_filters, search.custom_fields, self.contact_fields, "contact")
        for custom_filter in custom_filters:
            stages.append(SearchStage(f"custom_field_{custom_filter['field']}", custom_filter))
        return stages

    def extract_telegram(self, contact: ContactRecord) -> str:
        if self.field_ids.telegram_custom:
            value = contact.custom_value(self.field_ids.telegram_custom)
            if isinstance(value, str):
                return normalize_telegram(value)
        elif self.field_ids.telegram and isinstance(contact.telegram, str):
            return normalize_telegram(contact.telegram)
        return ""

    async def search_with_filter(self, stage: SearchStage) -> StageOutcome:
        body = {
            "offset": 0,
            "pageSize": PAGE_SIZE,
            "filters": [stage.filter],
            "fields": self.fields,
        }
        try:
            response = await self.client.request(path="contact/list", body=body)
            contacts = response.get("contacts") or []
            if not contacts:
                return NotFound()
            contact = ContactRecord.from_api(contacts[0])
            if contact.id <= 0:
                return NotFound()
            return Matched(contact, telegram=self.extract_telegram(contact))
        except Exception as exc:
            message = str(exc) or type(exc).__name__
            logger.error(f"[planfix_search_contact] Error searching with filter {stage.name}: {message}")
            return Failed(message)

    def _telegram_conflict(self, search: ContactSearchInput, outcome: Matched) -> bool:
        if not search.telegram or not outcome.telegram:
            return False
        return normalize_telegram(search.telegram) != outcome.telegram

    async def _run_cascade(self, search: ContactSearchInput) -> ContactSearchResult:
        for stage in self.build_stages(search):
            outcome = await self.search_with_filter(stage)
            if not isinstance(outcome, Matched):
                continue
            if stage.verify_telegram and self._telegram_conflict(search, outcome):
                logger.info(
                    f"[planfix_search_contact] Telegram mismatch on {stage.name} match: "
                    f"expected {search.telegram!r}, found {outcome.telegram!r}"
                )
                continue
            contact = outcome.contact
            return ContactSearchResult(
                contact_id=contact.id,
                url=self.contact_url(contact.id),
                first_name=contact.name,
                last_name=contact.lastname,
                telegram=outcome.telegram or None,
            )
        return ContactSearchResult(contact_id=0, url=self.contact_url(0))

    async def resolve(self, search: ContactSearchInput) -> ContactSearchResult:
        try:
            return await self._run_cascade(search)
        except Exception as exc:
            message = str(exc) or type(exc).__name__
            logger.error(f"[planfix_search_contact] Error: {message}", exc_info=True)
            return ContactSearchResult(contact_id=0, error=message)
