from fastapi import APIRouter
from smartcare.api import rooms

router = APIRouter()


@router.get("/health")
async def health():
    return {"status": "ok"}


router.include_router(rooms.router)
