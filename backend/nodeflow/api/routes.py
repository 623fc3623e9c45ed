from fastapi import APIRouter

from .v1 import ai, workflows

api_router = APIRouter(prefix="/api", tags=["nodeflow"])

api_router.include_router(workflows.router, prefix="/v1", tags=["workflows"])
api_router.include_router(ai.router, prefix="/v1", tags=["ai"])


@api_router.get("/")
def read_root():
    return {"message": "nodeflow workflow engine"}
