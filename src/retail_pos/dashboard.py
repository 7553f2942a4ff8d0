"""Read-only dashboard aggregates computed by scanning the workbook."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import Dict, Tuple

from . import core_logic, log
from .constants import RECENT_ACTIVITY_LIMIT, RECENT_ORDERS_LIMIT, SALES_WINDOW_DAYS, OrderStatus
from .core_logic import RuntimeContext
from .data_manager import ActivityRow, ProductRow
from .orders import OrderDetails, list_orders, recent_orders


@dataclass(frozen=True)
class DashboardStats:
    revenue: Decimal
    orders: int
    new_customers: int
    profit: Decimal


@dataclass(frozen=True)
class DailySales:
    day: date
    amount: Decimal


@dataclass(frozen=True)
class DashboardData:
    stats: DashboardStats
    recent_orders: Tuple[OrderDetails, ...]
    recent_activities: Tuple[ActivityRow, ...]
    low_stock_products: Tuple[ProductRow, ...]
    sales_by_day: Tuple[DailySales, ...]


def get_dashboard_data(context: RuntimeContext) -> DashboardData:
    """Compute the dashboard view.

    ``revenue`` and ``orders`` cover completed orders dated in the current
    local calendar month and ``profit`` is a fixed share of revenue
    (``settings.profit_margin``). ``sales_by_day`` spans the trailing
    :data:`SALES_WINDOW_DAYS` local days, oldest first, summing the final
    amount of every order that is not cancelled; days without sales report
    zero.

    The context lock is held while scanning so the figures come from one
    consistent state.
    """

    with context.lock:
        today = context.now().astimezone().date()
        month = (today.year, today.month)
        window: Dict[date, Decimal] = {
            today - timedelta(days=offset): Decimal("0") for offset in range(SALES_WINDOW_DAYS - 1, -1, -1)
        }

        revenue = Decimal("0")
        completed = 0
        for order in list_orders(context):
            day = core_logic.parse_timestamp(order.order_date_iso).astimezone().date()
            if order.status == OrderStatus.COMPLETED.value and (day.year, day.month) == month:
                revenue += order.final_amount
                completed += 1
            if order.status != OrderStatus.CANCELLED.value and day in window:
                window[day] += order.final_amount

        new_customers = 0
        for customer in core_logic.list_customers(context):
            if not customer.created_iso:
                continue
            created = core_logic.parse_timestamp(customer.created_iso).astimezone().date()
            if (created.year, created.month) == month:
                new_customers += 1

        stats = DashboardStats(
            revenue=revenue,
            orders=completed,
            new_customers=new_customers,
            profit=revenue * context.settings.profit_margin,
        )
        data = DashboardData(
            stats=stats,
            recent_orders=tuple(recent_orders(context, RECENT_ORDERS_LIMIT)),
            recent_activities=tuple(core_logic.recent_activity(context, RECENT_ACTIVITY_LIMIT)),
            low_stock_products=tuple(core_logic.low_stock_products(context)),
            sales_by_day=tuple(DailySales(day=day, amount=amount) for day, amount in window.items()),
        )

    log.debug("Dashboard computed: revenue=%s orders=%d", revenue, completed)
    return data
