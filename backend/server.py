"""
DocFlow Hub - Main Server

Student document approval workflow service. Routes are organized in /routes/,
the workflow core lives in /services/.
"""

from dotenv import load_dotenv
load_dotenv()  # Load .env file before any os.environ reads in services

from fastapi import FastAPI, APIRouter, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from motor.motor_asyncio import AsyncIOMotorClient
from contextlib import asynccontextmanager
import logging

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# ==================== ROUTERS ====================
from routes import documents, workflows

# ==================== SERVICES ====================
from services import docflow_config
from services.bootstrap import build_services
from services.email_service import EmailService
from services.errors import WorkflowError
from services.storage import build_stores
from services.workflow_store import seed_default_workflows

mongo_client = None
workflow_services = None


# ==================== LIFESPAN ====================
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown."""
    global mongo_client, workflow_services

    logger.info("Starting DocFlow Hub (storage=%s)...", docflow_config.STORAGE_BACKEND)

    db = None
    if docflow_config.STORAGE_BACKEND == "mongo":
        mongo_client = AsyncIOMotorClient(docflow_config.MONGO_URL)
        db = mongo_client[docflow_config.DB_NAME]
        await create_indexes(db)
    stores = build_stores(docflow_config.STORAGE_BACKEND, db)

    workflow_services = build_services(stores, email_service=EmailService(db=db))
    documents.set_dependencies(workflow_services)
    workflows.set_dependencies(workflow_services)

    if docflow_config.SEED_DEFAULT_WORKFLOWS:
        await seed_default_workflows(workflow_services.workflow_store)

    logger.info("DocFlow Hub started successfully")

    yield

    logger.info("Shutting down DocFlow Hub...")
    await workflow_services.dispatcher.drain()
    if mongo_client:
        mongo_client.close()


async def create_indexes(db):
    """Create database indexes."""
    # Documents
    await db.documents.create_index("id", unique=True)
    await db.documents.create_index([("student_id", 1), ("status", 1)])
    await db.documents.create_index([("current_department", 1), ("status", 1)])
    await db.documents.create_index("history.actor_id")

    # Workflows
    await db.workflows.create_index("id", unique=True)
    await db.workflows.create_index([("document_type", 1), ("is_active", 1)])

    # Users and audit events
    await db.users.create_index("id", unique=True)
    await db.users.create_index([("role", 1), ("department", 1)])
    await db.audit_events.create_index([("kind", 1), ("timestamp", -1)])

    logger.info("Database indexes created")


# ==================== APP SETUP ====================
app = FastAPI(
    title="DocFlow Hub",
    description="Departmental approval workflow for student documents",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(WorkflowError)
async def workflow_error_handler(request: Request, exc: WorkflowError):
    """Map workflow errors to their 4xx responses."""
    logger.info("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, **exc.to_dict()})


# API Router with /api prefix
api_router = APIRouter(prefix="/api")
api_router.include_router(documents.router)
api_router.include_router(workflows.router)
app.include_router(api_router)


# ==================== ROOT ENDPOINTS ====================
@app.get("/")
async def root():
    return {
        "service": "DocFlow Hub",
        "version": "1.0.0",
        "status": "running"
    }


@app.get("/api/health")
async def health():
    return {
        "status": "healthy",
        "service": "docflow-hub",
        "storage": docflow_config.STORAGE_BACKEND,
    }
