from fastapi import FastAPI, HTTPException
from contextlib import asynccontextmanager
from typing import Optional
import logging
import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

from api.routes import router as api_router
from db.database import Database

# Configure logging
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# SQL echo goes through DATABASE_ECHO, not the root level
logging.getLogger("sqlalchemy").setLevel(logging.WARNING)


def create_app(database: Optional[Database] = None) -> FastAPI:
    """
    Build the application around one store handle

    Args:
        database: Store to serve; defaults to one configured from the environment
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Open the store on startup, close it on shutdown"""
        logger.info("Starting watch history archive...")
        db = database or Database()
        await db.init()
        app.state.db = db

        yield

        logger.info("Shutting down watch history archive...")
        await db.close()

    app = FastAPI(
        title="Watch History Archive",
        description="Personal archive of video watch history with notes and tags",
        version="0.1.0",
        lifespan=lifespan
    )
    app.include_router(api_router)

    @app.get("/root")
    async def root():
        """Root endpoint - API information"""
        return {
            "name": "Watch History Archive",
            "status": "running",
            "endpoints": {
                "health": "/health",
                "history": "/api/history",
                "stats": "/api/stats",
                "tags": "/api/tags",
                "export": "/api/export",
                "import": "/api/import",
            }
        }

    @app.get("/health")
    async def health():
        """Health check endpoint"""
        db: Database = app.state.db
        try:
            await db.healthcheck()
        except Exception as e:
            logger.error(f"Health check failed: {e}")
            raise HTTPException(status_code=503, detail="Database unavailable")
        return {"status": "healthy", "schema_version": db.schema_version}

    @app.get("/{path:path}")
    async def catch_all(path: str):
        """Catch-all for undefined routes - must be last"""
        raise HTTPException(status_code=404, detail=f"Route /{path} not found")

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        app,
        host=os.getenv("HOST", "127.0.0.1"),
        port=int(os.getenv("PORT", "8000")),
    )
