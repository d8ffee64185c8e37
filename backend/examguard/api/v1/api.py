from fastapi import APIRouter

from .endpoints import exam_sessions, incidents, monitoring, proctoring, realtime

api_router = APIRouter()

api_router.include_router(exam_sessions.router, prefix="/exam-sessions", tags=["exam-sessions"])
api_router.include_router(incidents.router, prefix="/security-incidents", tags=["security-incidents"])
api_router.include_router(monitoring.router, tags=["monitoring"])
api_router.include_router(proctoring.router, prefix="/proctoring", tags=["proctoring"])
api_router.include_router(realtime.router, tags=["realtime"])


@api_router.get("/health")
async def health_check():
    return {"status": "ok", "message": "API is healthy"}
