"""
Pytest configuration and fixtures.
"""
from decimal import Decimal
from typing import Any, Callable, Dict, Iterator

import pytest

from estimate_audit.config import get_settings
from estimate_audit.supplement_engine.classification import ChargeClassifier
from estimate_audit.supplement_engine.context import AnalysisContext, ComparisonOptions
from estimate_audit.supplement_engine.models import ClassifiedLineItem, LineItem

RecordFactory = Callable[..., Dict[str, Any]]


@pytest.fixture(autouse=True)
def reset_settings() -> Iterator[None]:
    """Clear cached settings so environment overrides apply per test."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def make_record() -> RecordFactory:
    """Build a raw line item record; total defaults to quantity x unit price."""

    def factory(
        id: str,
        description: str,
        unit_price: Any = "100.00",
        quantity: Any = "1",
        total: Any = None,
        **extra: Any,
    ) -> Dict[str, Any]:
        if total is None:
            total = str(Decimal(str(quantity)) * Decimal(str(unit_price)))
        record = {
            "id": id,
            "description": description,
            "quantity": quantity,
            "unit_price": unit_price,
            "total": total,
        }
        record.update(extra)
        return record

    return factory


@pytest.fixture
def make_item() -> Callable[..., ClassifiedLineItem]:
    """Build a classified line item directly, bypassing normalization."""
    classifier = ChargeClassifier()

    def factory(
        id: str,
        description: str,
        unit_price: str = "100.00",
        quantity: str = "1",
        total: str = None,
        **extra: Any,
    ) -> ClassifiedLineItem:
        if total is None:
            total = str(Decimal(quantity) * Decimal(unit_price))
        item = LineItem(
            id=id,
            description=description,
            quantity=Decimal(quantity),
            unit_price=Decimal(unit_price),
            total=Decimal(total),
            **extra,
        )
        return classifier.classify(item)

    return factory


@pytest.fixture
def context() -> AnalysisContext:
    """Fresh run context with default options."""
    return AnalysisContext(options=ComparisonOptions())
