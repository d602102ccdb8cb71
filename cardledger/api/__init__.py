from cardledger.api.admin import router as admin_router
from cardledger.api.health import router as health_router
from cardledger.api.provisional import router as provisional_router

__all__ = [
    "admin_router",
    "health_router",
    "provisional_router",
]
