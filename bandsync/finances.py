"""
Group finances: income and expense records with per-currency totals.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, List, Optional

from bandsync.errors import InvalidArgument, NotFound, Unauthorized
from bandsync.firebase_constants import (
    FINANCES_COLLECTION,
    GROUPS_COLLECTION,
    USERS_COLLECTION,
)
from bandsync.membership import is_manager, require_active_member
from bandsync.models import (
    FinanceCategory,
    FinanceRecord,
    FinanceType,
    as_utc,
    decode_finance_record,
    decode_group,
    decode_user,
    encode,
)
from bandsync.store import DocumentStore

logger = logging.getLogger(__name__)


@dataclass
class CurrencyTotals:
    income: float = 0.0
    expense: float = 0.0

    @property
    def balance(self) -> float:
        return self.income - self.expense


class FinanceService:
    def __init__(self, store: DocumentStore):
        self.store = store

    def _require_member(self, group_id: str, actor_id: Optional[str], action: str):
        group = decode_group(self.store.get(GROUPS_COLLECTION, group_id))
        if group is None:
            raise NotFound(f"Group {group_id} not found")
        if actor_id is None:
            return None
        actor = decode_user(self.store.get(USERS_COLLECTION, actor_id))
        return require_active_member(group, actor, action)

    def add_record(
        self,
        group_id: str,
        *,
        type: FinanceType,
        amount: float,
        currency: str,
        category: FinanceCategory,
        date: Optional[datetime] = None,
        details: str = "",
        actor_id: Optional[str] = None,
    ) -> str:
        try:
            type = FinanceType(type)
            category = FinanceCategory(category)
        except ValueError as exc:
            raise InvalidArgument(str(exc)) from exc
        if category not in FinanceCategory.for_type(type):
            raise InvalidArgument(
                f"Category {category.value} is not valid for {type.value} records"
            )
        try:
            amount = float(amount)
        except (TypeError, ValueError) as exc:
            raise InvalidArgument("Amount must be a number") from exc
        if not amount > 0:
            raise InvalidArgument("Amount must be greater than zero")
        currency = (currency or "").strip().upper()
        if not currency:
            raise InvalidArgument("Currency is required")
        self._require_member(group_id, actor_id, "record finances")

        record = FinanceRecord(
            id=None,
            group_id=group_id,
            type=type,
            amount=amount,
            currency=currency,
            category=category,
            date=as_utc(date) or datetime.now(timezone.utc),
            details=(details or "").strip(),
            created_by=actor_id,
        )
        record_id = self.store.add(FINANCES_COLLECTION, encode(record))
        logger.info(
            "Finance record %s (%s %.2f %s) added to group %s",
            record_id,
            type.value,
            amount,
            currency,
            group_id,
        )
        return record_id

    def get_record(self, record_id: str) -> FinanceRecord:
        record = decode_finance_record(self.store.get(FINANCES_COLLECTION, record_id))
        if record is None:
            raise NotFound(f"Finance record {record_id} not found")
        return record

    def records(self, group_id: str, *, limit: Optional[int] = None) -> List[FinanceRecord]:
        docs = self.store.query(
            FINANCES_COLLECTION,
            [("groupId", "==", group_id)],
            order_by="date",
            descending=True,
            limit=limit,
        )
        return [r for r in map(decode_finance_record, docs) if r is not None]

    def delete_record(self, record_id: str, *, actor_id: Optional[str] = None) -> None:
        record = self.get_record(record_id)
        actor = self._require_member(record.group_id, actor_id, "delete finance records")
        if actor is not None and actor.id != record.created_by and not is_manager(actor.role):
            raise Unauthorized("Only the creator or a manager can delete this record")
        self.store.delete(FINANCES_COLLECTION, record_id)
        logger.info("Finance record %s deleted", record_id)

    def summary(self, group_id: str) -> Dict[str, CurrencyTotals]:
        totals: Dict[str, CurrencyTotals] = {}
        for record in self.records(group_id):
            entry = totals.setdefault(record.currency, CurrencyTotals())
            if record.type == FinanceType.INCOME:
                entry.income += record.amount
            else:
                entry.expense += record.amount
        return totals
