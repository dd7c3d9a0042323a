"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from backend.app.api.v1.endpoints import (
    customers, current_account, sales, payments, credit_notes, fiscal, admin_ops
)

router = APIRouter()

# Customers and current account
router.include_router(customers.router)
router.include_router(current_account.router)

# Documents that post on the current account
router.include_router(sales.router)
router.include_router(payments.router)
router.include_router(credit_notes.router)

# Electronic invoicing
router.include_router(fiscal.router)

# Maintenance
router.include_router(admin_ops.router)
