from fastapi import APIRouter

from insightgen.routers import discovery, query_validation

api_router = APIRouter()
api_router.include_router(discovery.router)
api_router.include_router(query_validation.router)

__all__ = ["api_router"]
