import logging
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config import CORS_ORIGINS, LOG_FORMAT, LOG_LEVEL, SERVER_NAME, SERVER_VERSION
from routers.storytelling import router as tools_router

# --------------------------------------------------------------------------
# --- Configuration & Setup ---
# --------------------------------------------------------------------------

logging.basicConfig(level=LOG_LEVEL, format=LOG_FORMAT)

app = FastAPI(
    title="n8n Storytelling Tools",
    description="HTTP access to the storytelling analysis tools backed by an n8n workflow.",
    version=SERVER_VERSION,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(tools_router)


@app.get("/")
def read_root():
    return {"message": f"{SERVER_NAME} is running", "version": SERVER_VERSION}
