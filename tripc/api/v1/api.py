from fastapi import APIRouter
from tripc.api.v1.routes.checkout import router as checkout_router
from tripc.api.v1.routes.bookings import router as bookings_router
from tripc.api.v1.routes.payments import router as payments_router
from tripc.api.v1.routes.vouchers import router as vouchers_router
from tripc.api.v1.routes.ops import router as ops_router

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(checkout_router)
api_router.include_router(bookings_router)
api_router.include_router(payments_router)
api_router.include_router(vouchers_router)
api_router.include_router(ops_router)
