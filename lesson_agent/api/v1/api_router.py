from fastapi import APIRouter

from lesson_agent.api.v1.routers.knowledge import router as knowledge_router
from lesson_agent.api.v1.routers.lessons import router as lessons_router

v1_router = APIRouter(prefix="/api/v1")

v1_router.include_router(lessons_router)
v1_router.include_router(knowledge_router)
