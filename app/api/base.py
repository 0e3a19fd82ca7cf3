from fastapi import APIRouter
from app.api import health, time
from app.features.stations.api import router as stations_router
from app.features.subscriptions.api import router as subscription_router

api_router = APIRouter()

# Include all sub-routers
api_router.include_router(time.router)
api_router.include_router(stations_router)
api_router.include_router(subscription_router)
api_router.include_router(health.router)
