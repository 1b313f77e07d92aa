"""
Lifespan module for microshop
Handles application startup and shutdown lifecycle
"""
from contextlib import asynccontextmanager
from fastapi import FastAPI
import logging
import traceback

from microshop.database import client, setup_indexes

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    startup_logger = logging.getLogger("uvicorn")
    service_name = getattr(app.state, "service_name", "all")
    startup_logger.info(f"Starting microshop ({service_name} service)")

    # Startup: unique and lookup indexes
    try:
        startup_logger.info("Setting up indexes...")
        await setup_indexes()
        startup_logger.info("Index setup completed")
    except Exception as e:
        startup_logger.error(f"Warning: Index setup failed: {e}")
        startup_logger.error(traceback.format_exc())

    # Startup: Set first user as admin if no admin exists
    if service_name in ("all", "users"):
        try:
            from microshop.migrations import migrate_admin_role
            startup_logger.info("Starting admin role migration...")
            await migrate_admin_role(client)
            startup_logger.info("Admin role migration completed")
        except Exception as e:
            startup_logger.error(f"Warning: Admin role migration failed: {e}")
            startup_logger.error(traceback.format_exc())

    yield

    shutdown_logger = logging.getLogger("uvicorn")
    shutdown_logger.info("Closing MongoDB client...")
    client.close()
    shutdown_logger.info("Shutdown complete")
