"""
Rule Service

Admin operations on commission rules: create, update, toggle, delete,
paginated listing and a summary by status and type.
"""

import logging
from typing import List, Optional, Tuple

from sqlalchemy import select, func, update
from sqlalchemy.ext.asyncio import AsyncSession

from commission_engine.exceptions import RuleConfigurationError, RuleNotFoundError
from commission_engine.models.commission import Commission, CommissionRule, RuleStatus, RuleType
from commission_engine.schemas.commission import RuleCreate, RuleUpdate, RulesSummary
from commission_engine.services.event_service import EventSink, EventType, LoggingEventSink, safe_emit

logger = logging.getLogger(__name__)


SORTABLE_COLUMNS = {
    "id": CommissionRule.id,
    "name": CommissionRule.name,
    "priority": CommissionRule.priority,
    "rule_type": CommissionRule.rule_type,
    "value": CommissionRule.value,
    "created_at": CommissionRule.created_at,
}


class RuleService:
    """
    Service for managing commission rules.
    """

    def __init__(self, db: AsyncSession, events: Optional[EventSink] = None):
        self.db = db
        self.events = events or LoggingEventSink()

    async def get_rule(self, rule_id: int) -> CommissionRule:
        result = await self.db.execute(
            select(CommissionRule).where(CommissionRule.id == rule_id)
        )
        rule = result.scalar_one_or_none()
        if rule is None:
            raise RuleNotFoundError(rule_id)
        return rule

    async def create_rule(self, data: RuleCreate) -> CommissionRule:
        rule = CommissionRule(
            name=data.name,
            rule_type=data.rule_type.value,
            calculation_method=data.calculation_method.value,
            value=data.value,
            target_id=data.target_id,
            priority=data.priority,
            status=data.status.value,
            start_date=data.start_date,
            end_date=data.end_date,
            created_by=data.created_by,
        )
        self.db.add(rule)
        await self.db.commit()
        await self.db.refresh(rule)

        logger.info(f"Created {rule.rule_type} rule #{rule.id} '{rule.name}'")
        await safe_emit(self.events, EventType.RULE_CREATED, {"rule_id": rule.id, "name": rule.name})
        return rule

    async def update_rule(self, rule_id: int, data: RuleUpdate) -> CommissionRule:
        """
        Apply a partial update.

        The merged rule is checked again: non-global rules keep a target and
        the validity window stays ordered. Switching a rule to global clears
        its target.
        """
        rule = await self.get_rule(rule_id)
        changes = data.model_dump(exclude_unset=True)

        for field, value in changes.items():
            if hasattr(value, "value"):
                value = value.value
            setattr(rule, field, value)

        if rule.rule_type == RuleType.GLOBAL.value:
            rule.target_id = None
        elif rule.target_id is None:
            await self.db.rollback()
            raise RuleConfigurationError(
                f"target_id is required for {rule.rule_type} rules",
                rule_id=rule_id,
            )
        if rule.start_date and rule.end_date and rule.end_date < rule.start_date:
            await self.db.rollback()
            raise RuleConfigurationError("end_date must not be before start_date", rule_id=rule_id)

        await self.db.commit()
        await self.db.refresh(rule)

        logger.info(f"Updated rule #{rule.id}: {sorted(changes)}")
        await safe_emit(self.events, EventType.RULE_UPDATED, {
            "rule_id": rule.id,
            "fields": sorted(changes),
        })
        return rule

    async def toggle_status(self, rule_id: int) -> CommissionRule:
        """Flip a rule between active and inactive."""
        rule = await self.get_rule(rule_id)
        rule.status = (
            RuleStatus.INACTIVE.value if rule.is_active else RuleStatus.ACTIVE.value
        )
        await self.db.commit()
        await self.db.refresh(rule)

        logger.info(f"Rule #{rule.id} is now {rule.status}")
        await safe_emit(self.events, EventType.RULE_UPDATED, {
            "rule_id": rule.id,
            "fields": ["status"],
            "status": rule.status,
        })
        return rule

    async def delete_rule(self, rule_id: int) -> None:
        """Delete a rule. Commissions keep their amounts; their rule_id becomes NULL."""
        rule = await self.get_rule(rule_id)
        await self.db.execute(
            update(Commission).where(Commission.rule_id == rule_id).values(rule_id=None)
        )
        await self.db.delete(rule)
        await self.db.commit()

        logger.info(f"Deleted rule #{rule_id}")
        await safe_emit(self.events, EventType.RULE_DELETED, {"rule_id": rule_id})

    async def list_rules(
        self,
        status: Optional[str] = None,
        rule_type: Optional[str] = None,
        search: Optional[str] = None,
        page: int = 1,
        per_page: int = 20,
        order_by: str = "priority",
        order: str = "desc",
    ) -> Tuple[List[CommissionRule], int]:
        """List rules with filters and pagination. Returns (items, total)."""
        query = select(CommissionRule)
        count_query = select(func.count(CommissionRule.id))

        if status:
            query = query.where(CommissionRule.status == status)
            count_query = count_query.where(CommissionRule.status == status)
        if rule_type:
            query = query.where(CommissionRule.rule_type == rule_type)
            count_query = count_query.where(CommissionRule.rule_type == rule_type)
        if search:
            pattern = f"%{search}%"
            condition = CommissionRule.name.ilike(pattern)
            query = query.where(condition)
            count_query = count_query.where(condition)

        total = (await self.db.execute(count_query)).scalar() or 0

        column = SORTABLE_COLUMNS.get(order_by, CommissionRule.priority)
        ordering = column.asc() if order.lower() == "asc" else column.desc()
        query = query.order_by(ordering, CommissionRule.id.asc())

        page = max(page, 1)
        query = query.offset((page - 1) * per_page).limit(per_page)

        result = await self.db.execute(query)
        return list(result.scalars().all()), total

    async def rules_summary(self) -> RulesSummary:
        result = await self.db.execute(
            select(CommissionRule.rule_type, CommissionRule.status, func.count(CommissionRule.id))
            .group_by(CommissionRule.rule_type, CommissionRule.status)
        )

        summary = RulesSummary(by_type={t.value: 0 for t in RuleType})
        for rule_type, status, count in result.all():
            summary.total += count
            summary.by_type[rule_type] = summary.by_type.get(rule_type, 0) + count
            if status == RuleStatus.ACTIVE.value:
                summary.active += count
            else:
                summary.inactive += count
        return summary
