from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from dotenv import load_dotenv
import logging
import os

load_dotenv()

from db.init import init_db
from routers import admin, check_in, webhooks
from utils.system_status import SystemStatus

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

app = FastAPI(title="Gym Check-In Backend")

# Created once per process; reset only through the admin endpoint
app.state.system_status = SystemStatus()

# Configure CORS
origins = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("CORS_ORIGINS", ",".join(origins)).split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.on_event("startup")
def startup():
    init_db()
    if not os.getenv("SQUARE_ACCESS_TOKEN"):
        logging.getLogger(__name__).warning("Square access token not provided")

# Include Routers
app.include_router(check_in.router, prefix="/check-in", tags=["Check-In"])
app.include_router(webhooks.router, prefix="/webhooks", tags=["Webhooks"])
app.include_router(admin.router, prefix="/admin", tags=["Admin"])

@app.get("/health")
def health_check():
    return {"status": "ok", "system": app.state.system_status.snapshot()}

@app.get("/")
def root():
    return {"message": "Gym Check-In Backend running successfully"}
