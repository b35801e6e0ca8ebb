# pikotunnel/main.py
"""
PikoTunnel Relay - Main Application
FastAPI application entry point and command line
"""

import argparse
import os
import shutil
import sqlite3
import sys
import tarfile
import tempfile
import uvicorn
import logging
from datetime import datetime
from contextlib import asynccontextmanager
from pathlib import Path
from typing import List, Optional

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from sqlalchemy.engine import make_url

from pikotunnel.api.v1 import peers, access_rules
from pikotunnel.config import Settings, settings
from pikotunnel.core.errors import NotFoundError, SubnetExhaustedError, ValidationError
from pikotunnel.core.runtime import RelayRuntime
from pikotunnel.schemas.base import HealthResponse

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def _error(status_code: int, error: str, error_code: str, details: Optional[dict] = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "success": False,
            "error": error,
            "error_code": error_code,
            "details": details,
            "timestamp": datetime.utcnow().isoformat()
        }
    )


def create_app(runtime: Optional[RelayRuntime] = None, bring_up: bool = True) -> FastAPI:
    """
    Build the FastAPI application

    Args:
        runtime: Preassembled runtime (tests inject one with a fake driver)
        bring_up: Reset the tunnel interface on startup
    """
    runtime = runtime or RelayRuntime(settings)
    app_settings = runtime.settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Application lifespan events
        - Startup: database, interface bring-up, recovery, worker
        - Shutdown: drain and stop the worker
        """
        logger.info(f"Starting {app_settings.APP_NAME} v{app_settings.APP_VERSION}")
        logger.info(f"Environment: {app_settings.ENV}")

        runtime.start(bring_up=bring_up)
        app.state.startup_time = datetime.utcnow()

        logger.info("Application started successfully")

        yield

        logger.info("Shutting down application")
        runtime.stop()

    app = FastAPI(
        title=app_settings.APP_NAME,
        description="""
    PikoTunnel Relay API

    Provisions WireGuard peers on a shared relay and controls which peers
    may exchange traffic. Requests record desired state; a background worker
    converges the tunnel interface and filter chain to it.

    ## Authentication

    Every endpoint except /health requires the shared token in the
    Authorization header.
    """,
        version=app_settings.APP_VERSION,
        lifespan=lifespan
    )
    app.state.runtime = runtime
    app.state.startup_time = None

    # === Exception Handlers ===

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Handle Pydantic validation errors"""
        errors = []
        for error in exc.errors():
            errors.append({
                "field": ".".join(str(loc) for loc in error["loc"]),
                "message": error["msg"],
                "type": error["type"]
            })
        return _error(
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            "Validation error",
            "VALIDATION_ERROR",
            {"errors": errors}
        )

    @app.exception_handler(ValidationError)
    async def relay_validation_handler(request: Request, exc: ValidationError):
        return _error(status.HTTP_400_BAD_REQUEST, str(exc), exc.error_code)

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError):
        return _error(status.HTTP_404_NOT_FOUND, str(exc), exc.error_code)

    @app.exception_handler(SubnetExhaustedError)
    async def subnet_exhausted_handler(request: Request, exc: SubnetExhaustedError):
        return _error(status.HTTP_503_SERVICE_UNAVAILABLE, str(exc), exc.error_code)

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Handle unexpected exceptions"""
        logger.exception(f"Unexpected error: {exc}")
        return _error(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "Internal server error",
            "INTERNAL_ERROR",
            None if app_settings.is_production else {"message": str(exc)}
        )

    # === Include Routers ===

    app.include_router(peers.router, prefix="/peers", tags=["Peers"])
    app.include_router(access_rules.router, tags=["Access Rules"])

    # === Root Endpoints ===

    @app.get(
        "/health",
        response_model=HealthResponse,
        summary="Health check",
        description="Check database, worker, queue, tunnel interface and address pool"
    )
    def health_check():
        """Health check endpoint for monitoring"""
        db_ok = runtime.db_manager.check_connection()
        db_status = "connected" if db_ok else "disconnected"
        worker_status = "running" if runtime.worker.is_alive else "stopped"
        interface_up = runtime.driver.is_interface_up()

        uptime = None
        if app.state.startup_time:
            uptime = (datetime.utcnow() - app.state.startup_time).total_seconds()

        healthy = db_ok and worker_status == "running" and interface_up
        return HealthResponse(
            status="healthy" if healthy else "unhealthy",
            version=app_settings.APP_VERSION,
            uptime_seconds=uptime,
            database=db_status,
            worker=worker_status,
            queued_jobs=runtime.queue.qsize(),
            interface="up" if interface_up else "down",
            tunnel_peers=len(runtime.driver.list_tunnel_peers()) if interface_up else None,
            records=runtime.db_manager.get_table_stats() if db_ok else None,
            ip_allocation=runtime.allocation_stats() if db_ok else None
        )

    return app


# === Command line ===

def preflight(app_settings: Settings) -> List[str]:
    """Problems that prevent the relay from managing the host network"""
    problems = []
    if hasattr(os, "geteuid") and os.geteuid() != 0:
        problems.append("Please run as root")
    for tool in app_settings.REQUIRED_TOOLS:
        if shutil.which(tool) is None:
            problems.append(f"{tool} not found in environment")
    for name in app_settings.missing_required():
        problems.append(f"{name} is not set")
    return problems


def backup(app_settings: Settings, env_file: str = ".env") -> Path:
    """
    Archive the SQLite database as an SQL dump, together with the env file

    Returns:
        Path of the written backup_<timestamp>.tar.gz
    """
    url = make_url(app_settings.DATABASE_URL)
    if url.get_backend_name() != "sqlite" or not url.database or url.database == ":memory:":
        raise RuntimeError("Backup is only supported for file-based SQLite databases")

    stamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
    target = Path(app_settings.BACKUP_DIR) / f"backup_{stamp}.tar.gz"

    with tempfile.TemporaryDirectory() as tmp:
        dump_path = Path(tmp) / "backup.sql"
        conn = sqlite3.connect(url.database)
        try:
            with open(dump_path, "w", encoding="utf-8") as fh:
                for line in conn.iterdump():
                    fh.write(f"{line}\n")
        finally:
            conn.close()

        with tarfile.open(target, "w:gz") as tar:
            tar.add(dump_path, arcname="backup.sql")
            if os.path.exists(env_file):
                tar.add(env_file, arcname=os.path.basename(env_file))

    return target


def cli(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="pikotunnel", description=settings.APP_NAME)
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("server", help="Reset the interface, recover state and serve the API")
    sub.add_parser("flush", help="Reset the tunnel interface and filter chain")
    sub.add_parser("backup", help="Archive the database and .env")
    args = parser.parse_args(argv)

    if args.command == "backup":
        try:
            target = backup(settings)
        except (RuntimeError, OSError, sqlite3.Error) as e:
            logger.error(f"Backup failed: {e}")
            return 1
        print(f"Backup saved to {target}")
        return 0

    problems = preflight(settings)
    if problems:
        for problem in problems:
            logger.error(problem)
        return 1

    if args.command == "flush":
        # Initial setup does the job
        return 0 if RelayRuntime(settings).bring_up_interface() else 1

    uvicorn.run(
        create_app(),
        host=settings.API_HOST,
        port=settings.API_PORT,
        log_level=settings.LOG_LEVEL.lower()
    )
    return 0


if __name__ == "__main__":
    sys.exit(cli())
