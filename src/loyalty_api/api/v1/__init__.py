from fastapi import APIRouter

from .endpoints import bot, health, integration, loyalty, observability

router = APIRouter()
router.include_router(health.router, tags=["Health"])
router.include_router(integration.router)
router.include_router(loyalty.router)
router.include_router(bot.router)
router.include_router(observability.router)
