from fastapi import APIRouter
from kpi_review.routers import kpi_reviews, reviews, calculation_configs, ratings, dashboard

# Centralized API router hub
# Routers are aggregated here, and main.py only imports this single hub.
api_router = APIRouter()

api_router.include_router(kpi_reviews.router, tags=["KPI Reviews"])
api_router.include_router(reviews.router, tags=["Reviews"])
api_router.include_router(calculation_configs.router, tags=["Calculation Settings"])
api_router.include_router(ratings.router, tags=["Ratings"])
api_router.include_router(dashboard.router, tags=["Dashboard"])
