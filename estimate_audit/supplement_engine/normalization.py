"""
Normalization layer for the supplement comparison engine.

Pass 1: Validate and coerce raw extracted records into LineItems.
Structurally invalid records are dropped and reported, never fatal on
their own. Each collection is returned in a stable, input-order
independent sequence.
"""

import re
from dataclasses import asdict, dataclass, field
from decimal import Decimal
from typing import Any, Iterable, List, Mapping, Optional, Set, Tuple, Union

import structlog
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from estimate_audit.exceptions import InsufficientDataError, InvalidInputError
from estimate_audit.services.numeric_parser import get_numeric_parser
from estimate_audit.supplement_engine.models import LineItem, RejectedRecord
from estimate_audit.utils.decimal_math import ZERO, to_decimal

logger = structlog.get_logger(__name__)

RawRecord = Union[Mapping[str, Any], LineItem]

_PUNCTUATION = re.compile(r"[^\w\s]")
_WHITESPACE = re.compile(r"\s+")


def normalize_description(description: str) -> str:
    """Case-fold, strip punctuation and collapse whitespace."""
    text = _PUNCTUATION.sub(" ", description.casefold())
    return _WHITESPACE.sub(" ", text).strip()


# =============================================================================
# Raw Record Schema
# =============================================================================

def _coerce_decimal(value: Any) -> Any:
    """Coerce numbers and numeric strings to Decimal; leave the rest for pydantic."""
    if value is None or isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise ValueError("boolean is not a number")
    if isinstance(value, (int, float)):
        return to_decimal(value)
    if isinstance(value, str):
        parsed = get_numeric_parser().parse(value)
        if parsed.value is None:
            raise ValueError(f"not a number: {value!r}")
        return parsed.value
    return value


def _require_finite(value: Optional[Decimal]) -> Optional[Decimal]:
    if value is not None and not value.is_finite():
        raise ValueError("must be a finite number")
    return value


def _optional_text(value: Any) -> Any:
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


class RawLineItem(BaseModel):
    """Schema for a record handed over by the extraction collaborator."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", str_strip_whitespace=True)

    id: str = Field(min_length=1)
    description: str = Field(min_length=1)
    quantity: Decimal
    unit_price: Decimal = Field(validation_alias=AliasChoices("unit_price", "unitPrice", "price"))
    total: Decimal
    operation_code: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("operation_code", "operationCode")
    )
    part_number: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("part_number", "partNumber")
    )
    labor_hours: Optional[Decimal] = Field(
        default=None, validation_alias=AliasChoices("labor_hours", "laborHours")
    )
    labor_rate: Optional[Decimal] = Field(
        default=None, validation_alias=AliasChoices("labor_rate", "laborRate")
    )
    category_hint: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("category_hint", "categoryHint", "category")
    )
    vehicle_system: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("vehicle_system", "vehicleSystem")
    )

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        if isinstance(value, bool):
            raise ValueError("id must be a string")
        if isinstance(value, int):
            return str(value)
        return value

    @field_validator("quantity", "unit_price", "total", "labor_hours", "labor_rate", mode="before")
    @classmethod
    def _coerce_numeric(cls, value: Any) -> Any:
        return _coerce_decimal(value)

    @field_validator("quantity", "unit_price", "total", "labor_hours", "labor_rate")
    @classmethod
    def _check_finite(cls, value: Optional[Decimal]) -> Optional[Decimal]:
        return _require_finite(value)

    @field_validator("quantity", "labor_hours")
    @classmethod
    def _check_non_negative(cls, value: Optional[Decimal]) -> Optional[Decimal]:
        if value is not None and value < ZERO:
            raise ValueError("must not be negative")
        return value

    @field_validator("operation_code", "part_number", "category_hint", "vehicle_system", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        return _optional_text(value)

    def to_line_item(self) -> LineItem:
        return LineItem(**self.model_dump())


# =============================================================================
# Normalization Layer
# =============================================================================

@dataclass
class NormalizationResult:
    """Normalized collections plus the records that were dropped."""
    original: List[LineItem] = field(default_factory=list)
    revised: List[LineItem] = field(default_factory=list)
    rejected: List[RejectedRecord] = field(default_factory=list)


class LineItemNormalizer:
    """
    Validates raw records and orders both collections deterministically.

    Sort key: normalized description, unit price, quantity, id.
    """

    def normalize(
        self,
        original_records: Iterable[RawRecord],
        revised_records: Iterable[RawRecord],
    ) -> NormalizationResult:
        """
        Normalize both estimates.

        Args:
            original_records: Raw records of the original estimate.
            revised_records: Raw records of the revised estimate.

        Returns:
            NormalizationResult with sorted LineItems and rejected records.

        Raises:
            InsufficientDataError: if neither side has a valid record.
        """
        result = NormalizationResult()
        result.original = self._normalize_side("original", original_records, result.rejected)
        result.revised = self._normalize_side("revised", revised_records, result.rejected)

        if not result.original and not result.revised:
            raise InsufficientDataError(rejected_count=len(result.rejected))

        logger.info(
            "Normalization complete",
            original=len(result.original),
            revised=len(result.revised),
            rejected=len(result.rejected),
        )
        return result

    def normalize_record(self, record: RawRecord) -> LineItem:
        """
        Validate and coerce a single raw record.

        Raises:
            InvalidInputError: if the record is structurally invalid.
        """
        data = asdict(record) if isinstance(record, LineItem) else record
        if not isinstance(data, Mapping):
            raise InvalidInputError(
                "Line item must be a mapping",
                details={"type": type(record).__name__},
            )
        try:
            return RawLineItem.model_validate(dict(data)).to_line_item()
        except ValidationError as e:
            problems = [
                f"{'.'.join(str(p) for p in err['loc']) or 'record'}: {err['msg']}"
                for err in e.errors()
            ]
            raise InvalidInputError(
                "; ".join(problems),
                details={"record_id": data.get("id"), "errors": problems},
            ) from e

    def _normalize_side(
        self,
        side: str,
        records: Iterable[RawRecord],
        rejected: List[RejectedRecord],
    ) -> List[LineItem]:
        items: List[LineItem] = []
        seen_ids: Set[str] = set()

        for index, record in enumerate(records or []):
            try:
                item = self.normalize_record(record)
                if item.id in seen_ids:
                    raise InvalidInputError(
                        f"Duplicate line item id '{item.id}'",
                        details={"record_id": item.id},
                    )
            except InvalidInputError as e:
                logger.warning(
                    "Dropping invalid line item",
                    side=side,
                    index=index,
                    error_code=e.error_code,
                    reason=e.message,
                )
                rejected.append(RejectedRecord(
                    side=side,
                    index=index,
                    reason=e.message,
                    record_id=_record_id(e.details.get("record_id")),
                ))
                continue

            seen_ids.add(item.id)
            items.append(item)

        items.sort(key=sort_key)
        return items


def sort_key(item: LineItem) -> Tuple[str, Decimal, Decimal, str]:
    """Stable composite ordering key."""
    return (normalize_description(item.description), item.unit_price, item.quantity, item.id)


def _record_id(value: Any) -> Optional[str]:
    return None if value is None else str(value)


def get_line_item_normalizer() -> LineItemNormalizer:
    """Get LineItemNormalizer instance."""
    return LineItemNormalizer()
