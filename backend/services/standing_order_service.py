"""
Standing (recurring) orders.

A standing order is a template that is periodically turned into a quote.
Generation holds a row lock on the standing order, and a partial unique
index allows one successful generation per standing order and date.
"""
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..config.settings import get_settings
from ..config.logging import get_logger, log_business_event
from ..core.exceptions import NotFoundError, InactiveCustomerError, StandingOrderStateError
from ..models.customer import Customer
from ..models.enums import (
    FREQUENCY_LABELS,
    StandingOrderFrequency,
    StandingOrderStatus,
    GenerationType,
    GenerationStatus,
    QuoteStatus,
)
from ..models.quote import Quote, QuoteItem
from ..models.standing_order import StandingOrder, StandingOrderItem, StandingOrderGeneration
from ..repositories.standing_order_repo import StandingOrderRepository
from ..schemas.standing_order import StandingOrderCreate, StandingOrderUpdate
from ..utils.date_utils import DateUtils, format_date, today as utc_today
from ..utils.identifiers import generate_reference, QUOTE_PREFIX
from .notification_service import NotificationService
from .order_service import OrderService

logger = get_logger(__name__)
settings = get_settings()

SCHEDULE_FIELDS = ("frequency", "day_of_week", "day_of_month")


def get_frequency_label(frequency) -> str:
    try:
        return FREQUENCY_LABELS[StandingOrderFrequency(frequency)]
    except ValueError:
        return str(frequency)


def get_day_of_week_label(day_of_week: Optional[int]) -> str:
    return DateUtils.get_day_of_week_label(day_of_week)


def calculate_next_schedule_date(frequency, day_of_week: Optional[int] = None,
                                 day_of_month: Optional[int] = None, from_date: date = None) -> date:
    """
    First scheduled date strictly after ``from_date``.

    Weekly and biweekly schedules use ``day_of_week`` (0 = Sunday), monthly
    and quarterly use ``day_of_month``, clamped to the length of the month.
    Missing values default to from_date's weekday or day.
    """
    from_date = from_date or utc_today()
    frequency = StandingOrderFrequency(frequency)
    if day_of_week is None:
        day_of_week = DateUtils.sunday_based_weekday(from_date)
    if day_of_month is None:
        day_of_month = from_date.day

    if frequency == StandingOrderFrequency.WEEKLY:
        return DateUtils.next_weekday_after(from_date, day_of_week)
    if frequency == StandingOrderFrequency.BIWEEKLY:
        return DateUtils.next_weekday_after(from_date + timedelta(days=7), day_of_week)
    if frequency == StandingOrderFrequency.MONTHLY:
        return DateUtils.next_month_day_after(from_date, day_of_month)
    return DateUtils.next_month_day_after(DateUtils.add_months(from_date, 2), day_of_month)


def _build_items(items, model):
    return [
        model(
            product_name=item.product_name,
            description=item.description,
            quantity=item.quantity,
            unit=item.unit,
            unit_price=item.unit_price,
            grade=item.grade,
            specifications=item.specifications,
            notes=item.notes,
        )
        for item in items
    ]


class StandingOrderService:
    def __init__(self, db: Session, notifications: NotificationService = None):
        self.db = db
        self.repo = StandingOrderRepository()
        self.notifications = notifications or NotificationService(db)

    def get_standing_order(self, standing_order_id: int) -> StandingOrder:
        return self.repo.get_or_404(self.db, standing_order_id, "StandingOrder")

    def list_standing_orders(self, **filters) -> Dict[str, Any]:
        return self.repo.list_standing_orders(self.db, **filters)

    def list_generations(self, standing_order_id: int, skip: int = 0, limit: int = 50) -> Dict[str, Any]:
        self.get_standing_order(standing_order_id)
        return self.repo.list_generations(self.db, standing_order_id, skip, limit)

    def _resolve_schedule(self, standing_order: StandingOrder, anchor: date):
        """Fill in missing weekday/day-of-month from the anchor date."""
        if standing_order.frequency in (StandingOrderFrequency.WEEKLY, StandingOrderFrequency.BIWEEKLY):
            if standing_order.day_of_week is None:
                standing_order.day_of_week = DateUtils.sunday_based_weekday(anchor)
        elif standing_order.day_of_month is None:
            standing_order.day_of_month = anchor.day

    def _next_date(self, standing_order: StandingOrder, from_date: date) -> date:
        return calculate_next_schedule_date(
            standing_order.frequency, standing_order.day_of_week, standing_order.day_of_month, from_date
        )

    # ------------------------------------------------------------------
    # Template management
    # ------------------------------------------------------------------

    def create_standing_order(self, data: StandingOrderCreate, actor: str = None) -> StandingOrder:
        customer = self.db.query(Customer).filter(
            Customer.id == data.customer_id, Customer.is_deleted == False  # noqa: E712
        ).first()
        if not customer:
            raise NotFoundError("Customer", data.customer_id)
        if not customer.is_active_customer:
            raise InactiveCustomerError(customer.customer_code)

        anchor = data.start_date or utc_today()
        standing_order = StandingOrder(
            customer_id=customer.id,
            name=data.name,
            frequency=data.frequency,
            day_of_week=data.day_of_week,
            day_of_month=data.day_of_month,
            currency=(data.currency or customer.preferred_currency or settings.DEFAULT_CURRENCY).upper(),
            status=StandingOrderStatus.ACTIVE,
            requires_approval=data.requires_approval,
            auto_use_credit=data.auto_use_credit,
            notes=data.notes,
            created_by=actor,
        )
        self._resolve_schedule(standing_order, anchor)
        # start_date itself is the first eligible run
        from_date = data.start_date - timedelta(days=1) if data.start_date else anchor
        standing_order.next_scheduled_date = self._next_date(standing_order, from_date)
        standing_order.items = _build_items(data.items, StandingOrderItem)

        self.db.add(standing_order)
        self.notifications.log_audit_event(
            "standing_order_created",
            {"customer_id": customer.id, "name": data.name, "frequency": str(data.frequency)},
            actor=actor,
        )
        self.db.commit()
        self.db.refresh(standing_order)
        logger.info(f"Standing order {standing_order.id} created, first run {standing_order.next_scheduled_date}")
        return standing_order

    def update_standing_order(self, standing_order_id: int, data: StandingOrderUpdate,
                              actor: str = None) -> StandingOrder:
        standing_order = self.get_standing_order(standing_order_id)
        if standing_order.status == StandingOrderStatus.CANCELLED:
            raise StandingOrderStateError("Cancelled standing orders cannot be changed")

        changes = data.model_dump(exclude_unset=True)
        for field, value in changes.items():
            setattr(standing_order, field, value)

        if any(field in changes for field in SCHEDULE_FIELDS):
            current = utc_today()
            self._resolve_schedule(standing_order, current)
            standing_order.next_scheduled_date = self._next_date(standing_order, current - timedelta(days=1))
        standing_order.updated_by = actor

        self.db.commit()
        self.db.refresh(standing_order)
        return standing_order

    def replace_items(self, standing_order_id: int, items, actor: str = None) -> StandingOrder:
        standing_order = self.get_standing_order(standing_order_id)
        if standing_order.status == StandingOrderStatus.CANCELLED:
            raise StandingOrderStateError("Cancelled standing orders cannot be changed")

        standing_order.items = _build_items(items, StandingOrderItem)
        standing_order.updated_by = actor
        self.db.commit()
        self.db.refresh(standing_order)
        return standing_order

    def update_status(self, standing_order_id: int, status: StandingOrderStatus, reason: str = None,
                      actor: str = None, today: date = None) -> StandingOrder:
        """Pause, resume or cancel. Cancelled is final."""
        standing_order = self.get_standing_order(standing_order_id)
        current = standing_order.status
        if current == StandingOrderStatus.CANCELLED:
            raise StandingOrderStateError("Cancelled standing orders cannot be changed")
        if current == status:
            raise StandingOrderStateError(f"Standing order is already {status}")

        now = datetime.utcnow()
        today = today or utc_today()
        if status == StandingOrderStatus.PAUSED:
            standing_order.paused_at = now
            standing_order.pause_reason = reason
        elif status == StandingOrderStatus.CANCELLED:
            standing_order.cancelled_at = now
            standing_order.cancellation_reason = reason
        else:
            standing_order.paused_at = None
            standing_order.pause_reason = None
            if standing_order.next_scheduled_date is None or standing_order.next_scheduled_date < today:
                standing_order.next_scheduled_date = self._next_date(standing_order, today - timedelta(days=1))

        standing_order.status = status
        standing_order.updated_by = actor
        self.notifications.log_audit_event(
            "standing_order_status_changed",
            {"standing_order_id": standing_order.id, "from": str(current), "to": str(status), "reason": reason},
            actor=actor,
        )
        self.db.commit()
        self.db.refresh(standing_order)
        return standing_order

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    def _record(self, standing_order: StandingOrder, run_date: date, generation_type: GenerationType,
                status: GenerationStatus, **fields) -> StandingOrderGeneration:
        generation = StandingOrderGeneration(
            standing_order_id=standing_order.id,
            scheduled_date=run_date,
            generation_type=generation_type,
            status=status,
            **fields
        )
        self.db.add(generation)
        return generation

    def _advance_schedule(self, standing_order: StandingOrder, run_date: date, generation_type: GenerationType,
                          today: date = None):
        """Move a scheduled run on to the first date after both the run date and yesterday"""
        if generation_type != GenerationType.SCHEDULED:
            return
        anchor = max(run_date, (today or utc_today()) - timedelta(days=1))
        if standing_order.next_scheduled_date is None or standing_order.next_scheduled_date <= anchor:
            standing_order.next_scheduled_date = self._next_date(standing_order, anchor)

    def _skip(self, standing_order: StandingOrder, run_date: date, generation_type: GenerationType,
              reason: str, today: date = None) -> Dict[str, Any]:
        self._record(standing_order, run_date, generation_type, GenerationStatus.SKIPPED, skipped_reason=reason)
        if standing_order.next_scheduled_date:
            self._advance_schedule(standing_order, run_date, generation_type, today)
        self.db.commit()
        logger.info(f"Standing order {standing_order.id} skipped for {run_date}: {reason}")
        return {"success": False, "skipped": True, "error": reason}

    def _fail(self, standing_order_id: int, run_date: date, generation_type: GenerationType,
              reason: str, estimated_amount: float = None, today: date = None) -> Dict[str, Any]:
        generation = StandingOrderGeneration(
            standing_order_id=standing_order_id,
            scheduled_date=run_date,
            generation_type=generation_type,
            status=GenerationStatus.FAILED,
            failure_reason=reason,
            estimated_amount=estimated_amount,
        )
        self.db.add(generation)
        standing_order = self.repo.get(self.db, standing_order_id)
        if standing_order is not None and standing_order.next_scheduled_date:
            self._advance_schedule(standing_order, run_date, generation_type, today)
        self.db.commit()
        logger.warning(f"Standing order {standing_order_id} generation failed for {run_date}: {reason}")
        return {"success": False, "error": reason, "estimated_amount": estimated_amount}

    def _build_quote(self, standing_order: StandingOrder, run_date: date, actor: str = None) -> Quote:
        quote = Quote(
            quote_number=generate_reference(QUOTE_PREFIX),
            customer_id=standing_order.customer_id,
            standing_order_id=standing_order.id,
            title=f"{standing_order.name} ({format_date(run_date)})",
            status=QuoteStatus.PENDING_APPROVAL if standing_order.requires_approval else QuoteStatus.ACCEPTED,
            currency=standing_order.currency,
            valid_until=run_date + timedelta(days=settings.QUOTE_VALIDITY_DAYS),
            use_credit=standing_order.auto_use_credit,
            notes=f"Generated from standing order '{standing_order.name}'",
            created_by=actor or "system",
        )
        if not standing_order.requires_approval:
            quote.accepted_at = datetime.utcnow()
        quote.items = _build_items(standing_order.items, QuoteItem)
        quote.recalculate_total()
        return quote

    def generate_order_from_standing_order(
        self,
        standing_order_id: int,
        generation_type: GenerationType = GenerationType.MANUAL,
        scheduled_date: date = None,
        actor: str = None,
        today: date = None,
    ) -> Dict[str, Any]:
        """
        Materialize one run of a standing order as a quote.

        Returns ``{success, quote_id, quote_number, order_id,
        estimated_amount, error, skipped}``.
        """
        standing_order = self.repo.get_for_update(self.db, standing_order_id)
        if standing_order is None:
            raise NotFoundError("StandingOrder", standing_order_id)

        if scheduled_date is None:
            if generation_type == GenerationType.SCHEDULED and standing_order.next_scheduled_date:
                scheduled_date = standing_order.next_scheduled_date
            else:
                scheduled_date = utc_today()

        if standing_order.status != StandingOrderStatus.ACTIVE:
            if generation_type == GenerationType.SCHEDULED:
                return self._skip(standing_order, scheduled_date, generation_type,
                                  f"Standing order is {standing_order.status}", today)
            self.db.rollback()
            raise StandingOrderStateError(f"Cannot generate from a {standing_order.status} standing order")

        if not standing_order.items:
            return self._fail(standing_order.id, scheduled_date, generation_type, "Standing order has no items",
                              today=today)

        if self.repo.successful_generation(self.db, standing_order.id, scheduled_date):
            return self._skip(standing_order, scheduled_date, generation_type,
                              f"Already generated for {scheduled_date.isoformat()}", today)

        estimated_amount = standing_order.estimated_amount
        quote = self._build_quote(standing_order, scheduled_date, actor)
        try:
            self.db.add(quote)
            self.db.flush()
            self._record(
                standing_order, scheduled_date, generation_type, GenerationStatus.SUCCESS,
                estimated_amount=estimated_amount, quote_id=quote.id,
                details={"requires_approval": standing_order.requires_approval, "actor": actor},
            )
            self.db.flush()
        except IntegrityError:
            # Another worker generated this date first
            self.db.rollback()
            logger.info(f"Standing order {standing_order_id} already generated for {scheduled_date}")
            return {"success": False, "skipped": True,
                    "error": f"Already generated for {scheduled_date.isoformat()}"}

        standing_order.total_orders_generated = (standing_order.total_orders_generated or 0) + 1
        standing_order.last_generated_date = scheduled_date
        self._advance_schedule(standing_order, scheduled_date, generation_type, today)
        self.db.commit()

        result = {
            "success": True,
            "quote_id": quote.id,
            "quote_number": quote.quote_number,
            "order_id": None,
            "estimated_amount": estimated_amount,
            "error": None,
            "skipped": False,
        }

        if not standing_order.requires_approval:
            try:
                order = OrderService(self.db, notifications=self.notifications).create_order_from_quote(
                    quote, actor=actor or "system", apply_credit=standing_order.auto_use_credit
                )
                result["order_id"] = order.id
            except Exception as e:
                self.db.rollback()
                result["error"] = f"Order conversion failed: {getattr(e, 'detail', None) or e}"
                logger.error(f"Standing order {standing_order_id}: {result['error']}")

        self._notify_generated(standing_order, quote, result)
        self.db.commit()
        log_business_event("standing_order_generated", f"{quote.quote_number} for {scheduled_date}",
                           customer_id=standing_order.customer_id)
        return result

    def _notify_generated(self, standing_order: StandingOrder, quote: Quote, result: Dict[str, Any]):
        if standing_order.requires_approval:
            title = f"Standing order quote awaiting approval: {quote.quote_number}"
            message = (f"'{standing_order.name}' generated quote {quote.quote_number} "
                       f"for {quote.currency} {quote.total_amount:,.2f}. Review and approve it to create the order.")
        else:
            title = f"Standing order generated: {quote.quote_number}"
            message = (f"'{standing_order.name}' generated quote {quote.quote_number} "
                       f"for {quote.currency} {quote.total_amount:,.2f}.")
            if result.get("error"):
                message = f"{message} {result['error']}"
        self.notifications.notify_admins(
            "standing_order_generated", title, message,
            data={"standing_order_id": standing_order.id, "quote_id": quote.id, "order_id": result.get("order_id")},
        )

    def run_due_standing_orders(self, today: date = None) -> Dict[str, int]:
        """Generate every active standing order due on or before today."""
        today = today or utc_today()
        due_ids: List[int] = [standing_order.id for standing_order in self.repo.get_due(self.db, today)]
        counts = {"due": len(due_ids), "generated": 0, "skipped": 0, "failed": 0}

        for standing_order_id in due_ids:
            try:
                result = self.generate_order_from_standing_order(standing_order_id, GenerationType.SCHEDULED,
                                                                 today=today)
            except Exception as e:
                self.db.rollback()
                logger.error(f"Scheduled generation for standing order {standing_order_id} crashed: {e}")
                try:
                    self._fail(standing_order_id, today, GenerationType.SCHEDULED, str(e), today=today)
                except Exception as record_error:
                    self.db.rollback()
                    logger.error(f"Could not record failed generation: {record_error}")
                counts["failed"] += 1
                continue

            if result.get("success"):
                counts["generated"] += 1
            elif result.get("skipped"):
                counts["skipped"] += 1
            else:
                counts["failed"] += 1

        logger.info(f"Standing order run for {today}: {counts}")
        return counts
