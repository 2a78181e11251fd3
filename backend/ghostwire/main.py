import json
import logging
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect, status
from fastapi.middleware.cors import CORSMiddleware
from pydantic import ValidationError

from .config import Settings, settings as default_settings
from .errors import CorruptStoreError, GhostwireError, InvalidIdentity, PersistenceFailure
from .hub import Hub
from .models import (
    ActivityLogRequest,
    ActivityLogResponse,
    CreateProfileRequest,
    CreateProfileResponse,
    MessageResponse,
    ProfileUpdateLogRequest,
    SaveDatasetRequest,
    SaveDatasetResponse,
    StatusResponse,
    SwitchDatasetRequest,
)

logger = logging.getLogger(__name__)


# ---------------- Logging ----------------

def configure_logging(cfg: Settings) -> None:
    logging.basicConfig(
        level=cfg.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if cfg.DEBUG_LOG_PATH:
        root = logging.getLogger()
        target = str(cfg.DEBUG_LOG_PATH.resolve())
        if not any(getattr(h, "baseFilename", None) == target for h in root.handlers):
            handler = logging.FileHandler(cfg.DEBUG_LOG_PATH, encoding="utf-8")
            handler.setLevel(logging.DEBUG)
            handler.setFormatter(logging.Formatter("%(asctime)s: %(name)s: %(message)s"))
            root.addHandler(handler)
            root.setLevel(logging.DEBUG)


def _hub(request: Request) -> Hub:
    return request.app.state.hub


def _store_error(e: GhostwireError) -> HTTPException:
    logger.error("Store operation failed: %s", e)
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))


# ---------------- App factory ----------------

def create_app(cfg: Optional[Settings] = None) -> FastAPI:
    cfg = cfg or default_settings
    configure_logging(cfg)

    app = FastAPI(title="Ghostwire Hub")
    app.state.hub = Hub(cfg)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ---------------- REST endpoints ----------------

    @app.get("/api/status", response_model=StatusResponse)
    async def get_status(request: Request):
        return StatusResponse(connectedClients=_hub(request).connected_clients())

    @app.get("/api/db")
    async def get_db(request: Request) -> Dict[str, Any]:
        try:
            return await _hub(request).get_document()
        except (CorruptStoreError, PersistenceFailure) as e:
            raise _store_error(e)

    @app.get("/api/db/list")
    async def list_datasets(request: Request) -> List[str]:
        return _hub(request).list_datasets()

    @app.post("/api/db/switch", response_model=MessageResponse)
    async def switch_dataset(req: SwitchDatasetRequest, request: Request):
        try:
            await _hub(request).switch_dataset(req.filename)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except FileNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))
        except (CorruptStoreError, PersistenceFailure) as e:
            raise _store_error(e)
        return MessageResponse(message=f"Successfully switched to {req.filename}")

    @app.post("/api/db/save", response_model=SaveDatasetResponse)
    async def save_dataset(req: SaveDatasetRequest, request: Request):
        try:
            filename = await _hub(request).save_dataset(req.filename, req.data)
        except (ValueError, CorruptStoreError) as e:
            raise HTTPException(status_code=400, detail=str(e))
        except PersistenceFailure as e:
            raise _store_error(e)
        return SaveDatasetResponse(message=f"Database saved as {filename}", filename=filename)

    @app.post("/api/profiles", response_model=CreateProfileResponse, status_code=201)
    async def create_profile(req: CreateProfileRequest, request: Request):
        try:
            profile = await _hub(request).create_profile(req.name, req.fields)
        except (CorruptStoreError, PersistenceFailure) as e:
            raise _store_error(e)
        return CreateProfileResponse(profileId=profile["id"], profile=profile)

    @app.post("/api/activity/log", response_model=ActivityLogResponse)
    async def log_activity(req: ActivityLogRequest, request: Request):
        try:
            logged = await _hub(request).log_activity(req.profileId, req.action, req.details)
        except (CorruptStoreError, PersistenceFailure) as e:
            raise _store_error(e)
        return ActivityLogResponse(logged=logged)

    @app.post("/api/profile-update", response_model=ActivityLogResponse)
    async def log_profile_update(req: ProfileUpdateLogRequest, request: Request):
        try:
            logged = await _hub(request).log_profile_update(req.profileId, req.changes, req.username)
        except (CorruptStoreError, PersistenceFailure) as e:
            raise _store_error(e)
        return ActivityLogResponse(logged=logged)

    # ---------------- WebSocket ----------------

    @app.websocket("/ws")
    async def ws_endpoint(ws: WebSocket):
        hub: Hub = ws.app.state.hub
        await ws.accept()
        hub.connection_opened(ws)
        try:
            while True:
                message = await ws.receive()
                if message["type"] == "websocket.disconnect":
                    break
                raw = message.get("text")
                if raw is None:
                    logger.warning("Ignoring binary frame")
                    continue
                try:
                    await hub.handle_frame(ws, raw)
                except json.JSONDecodeError:
                    logger.warning("Ignoring malformed frame: %.80s", raw)
                except ValidationError as e:
                    logger.warning("Ignoring invalid frame: %s", e.errors())
                except InvalidIdentity as e:
                    logger.warning("%s", e)
                except GhostwireError as e:
                    logger.error("Failed to process frame: %s", e)
        except WebSocketDisconnect:
            pass
        finally:
            try:
                await hub.connection_closed(ws)
            except GhostwireError as e:
                logger.error("Presence broadcast after disconnect failed: %s", e)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=default_settings.HOST, port=default_settings.PORT)
