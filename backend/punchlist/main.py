import logging
import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from backend.punchlist.api.routes.assignments import router as assignments_router
from backend.punchlist.api.routes.system import router as system_router
from backend.punchlist.api.routes.webhooks import router as webhooks_router
from backend.punchlist.config import get_settings


logger = logging.getLogger(__name__)

DEV_ORIGINS = ["http://localhost:3000", "http://127.0.0.1:3000"]


def _cors_origins() -> list[str]:
    raw = os.getenv("CORS_ALLOW_ORIGINS")
    if raw is None:
        origins = list(DEV_ORIGINS)
    else:
        origins = [origin.strip() for origin in raw.split(",") if origin.strip()]
    if not origins:
        raise RuntimeError("CORS_ALLOW_ORIGINS must not be empty.")
    return origins


# Fail at startup on bad deadline configuration rather than on the first sweep.
get_settings()

app = FastAPI(title="Punch List Dispatch API", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(webhooks_router)
app.include_router(assignments_router)
app.include_router(system_router)


@app.get("/health")
def health():
    return {"ok": True}
