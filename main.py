# /main.py
import uvicorn
import logging
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

import config
from logging_config import LOGGING_CONFIG

logger = logging.getLogger(__name__)
# Import the individual router modules
from routers import generate, verify

app = FastAPI(
    title="ePassport Fixture API",
    description="Generates synthetic ePassport documents and verifies Passive and Active Authentication.",
    version="1.0.0"
)

# --- Middleware ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)

# --- API Routers ---
app.include_router(generate.router, tags=["Generation"])
app.include_router(verify.router, tags=["Verification"])


@app.get("/", tags=["Health Check"])
async def read_root():
    return {"message": "ePassport Fixture API is running"}

# --- Run Server ---
if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=config.WEBHOOK_PORT,
        log_config=LOGGING_CONFIG,
        reload=True
    )
