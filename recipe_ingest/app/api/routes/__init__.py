from fastapi import APIRouter

from recipe_ingest.app.api.routes import ingest

api_router = APIRouter()
api_router.include_router(ingest.router)
