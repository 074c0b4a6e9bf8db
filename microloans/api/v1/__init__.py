from fastapi import APIRouter

from microloans.api.v1.routers import health, loans, member_payments

api_router = APIRouter()
api_router.include_router(health.router)
api_router.include_router(loans.router)
api_router.include_router(member_payments.router)

__all__ = ["api_router"]
