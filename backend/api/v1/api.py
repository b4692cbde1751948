from fastapi import APIRouter

from .endpoints import (
    auth, customers, leads, quotes, orders, standing_orders,
    credit, invoices, notifications, payments, webhooks, reports, jobs
)

api_router = APIRouter()

api_router.include_router(auth.router, prefix="/auth", tags=["Authentication"])
api_router.include_router(customers.router, prefix="/customers", tags=["Customers"])
api_router.include_router(leads.router, prefix="/leads", tags=["Leads"])
api_router.include_router(quotes.router, prefix="/quotes", tags=["Quotes"])
api_router.include_router(orders.router, prefix="/orders", tags=["Orders"])
api_router.include_router(standing_orders.router, prefix="/standing-orders", tags=["Standing Orders"])
api_router.include_router(credit.router, prefix="/credit", tags=["Credit"])
api_router.include_router(invoices.router, prefix="/invoices", tags=["Invoices"])
api_router.include_router(notifications.router, prefix="/notifications", tags=["Notifications"])
api_router.include_router(payments.router, prefix="/payments", tags=["Payments"])
api_router.include_router(webhooks.router, prefix="/webhooks", tags=["Webhooks"])
api_router.include_router(reports.router, prefix="/reports", tags=["Reports"])
api_router.include_router(jobs.router, prefix="/jobs", tags=["Jobs"])
