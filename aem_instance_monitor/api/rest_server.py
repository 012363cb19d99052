#!/usr/bin/env python3
"""
AEM Instance Monitor - REST API Server
HTTP access to status detection, health checks and lifecycle control.
"""

import asyncio
import time
from datetime import datetime, timezone
from typing import Dict, Any, Optional

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
import uvicorn

from .. import __version__
from ..core.lifecycle import LifecycleController
from ..core.models import (
    InstanceNotFoundError, StopFailedError, UnsupportedPlatformError, InstanceStoreError
)
from ..store.credential_store import CredentialStore

import structlog
logger = structlog.get_logger()


class CredentialsBody(BaseModel):
    username: str
    password: str


class RestAPIServer:
    """
    REST API server exposing the instance monitor.

    Provides endpoints for:
    - Status detection for one or all instances
    - Authenticated health checks
    - Stopping instances
    - Console URLs and credential management
    """

    def __init__(self, controller: LifecycleController,
                 credential_store: CredentialStore,
                 config: Dict[str, Any]):
        """
        Initialize REST API server.

        Args:
            controller: Lifecycle controller serving all instance operations
            credential_store: Store used by the credentials endpoint
            config: API configuration section
        """
        self.controller = controller
        self.credential_store = credential_store
        self.config = config

        self.host = config.get('host', '127.0.0.1')
        self.port = config.get('port', 8765)
        self.debug = config.get('debug', False)

        self.app = FastAPI(
            title="AEM Instance Monitor API",
            description="Status detection and lifecycle control for local AEM instances",
            version=__version__,
            docs_url="/docs" if self.debug else None,
            redoc_url="/redoc" if self.debug else None
        )
        self.start_time = time.time()

        self._setup_middleware()
        self._setup_routes()

        self.server: Optional[uvicorn.Server] = None

    async def start(self) -> None:
        """Serve until stop() is called."""
        logger.info("api_server_starting", host=self.host, port=self.port)

        config = uvicorn.Config(
            app=self.app,
            host=self.host,
            port=self.port,
            log_level="info" if self.debug else "warning",
            access_log=self.debug
        )

        self.server = uvicorn.Server(config)
        await self.server.serve()

    async def stop(self) -> None:
        if self.server:
            logger.info("api_server_stopping")
            self.server.should_exit = True
            await asyncio.sleep(0.5)

    def _setup_middleware(self) -> None:
        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=self.config.get('cors', {}).get('origins', ["*"]),
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

        @self.app.middleware("http")
        async def log_requests(request: Request, call_next):
            start_time = time.time()
            response = await call_next(request)
            process_time = time.time() - start_time

            logger.info("api_request",
                        method=request.method,
                        url=str(request.url),
                        status_code=response.status_code,
                        process_time=f"{process_time:.3f}s")

            return response

    def _setup_routes(self) -> None:
        controller = self.controller

        @self.app.get("/api/health")
        async def get_service_health():
            return {
                "status": "healthy",
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "version": __version__,
                "uptime_seconds": time.time() - self.start_time,
            }

        @self.app.get("/api/instances")
        async def list_instances():
            instances = await self._call(controller.store.list())
            return [instance.to_dict() for instance in instances]

        @self.app.get("/api/instances/status")
        async def detect_all_instances():
            results = await self._call(controller.detect_all())
            return [result.to_dict() for result in results]

        @self.app.get("/api/instances/{instance_id}/status")
        async def detect_instance_status(instance_id: str):
            result = await self._call(controller.detect_status(instance_id))
            return result.to_dict()

        @self.app.get("/api/instances/{instance_id}/health")
        async def check_instance_health(instance_id: str):
            result = await self._call(controller.check_health(instance_id))
            return result.to_dict()

        @self.app.post("/api/instances/{instance_id}/stop")
        async def stop_instance(instance_id: str):
            stopped = await self._call(controller.stop(instance_id))
            return {"instance_id": instance_id, "stopped": stopped}

        @self.app.get("/api/instances/{instance_id}/urls")
        async def get_instance_urls(instance_id: str):
            return await self._call(controller.instance_urls(instance_id))

        @self.app.put("/api/instances/{instance_id}/credentials")
        async def store_credentials(instance_id: str, body: CredentialsBody):
            await self._call(controller.store.get(instance_id))
            await self._call(self.credential_store.save(instance_id, body.username, body.password))
            return {"instance_id": instance_id, "stored": True}

    async def _call(self, operation):
        """Await an operation, mapping monitor errors onto HTTP statuses."""
        try:
            return await operation
        except InstanceNotFoundError as e:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
        except (StopFailedError, UnsupportedPlatformError) as e:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
        except InstanceStoreError as e:
            logger.error("api_store_error", error=str(e))
            raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))
