from fastapi import APIRouter

from marketplace.api.routes import (
    files,
    health,
    purchase_orders,
    rfqs,
    sales_orders,
    sales_quotes,
    supplier_quotes,
)

api_router = APIRouter()
api_router.include_router(health.router)
api_router.include_router(rfqs.router)
api_router.include_router(supplier_quotes.router)
api_router.include_router(sales_quotes.router)
api_router.include_router(sales_orders.router)
api_router.include_router(purchase_orders.router)
api_router.include_router(files.router)
