"""FastAPI application for the statistical encoder control server.

REST API で統計的エンコーダセッションを作成・操作し、
WebSocket で生成フレームのメタデータ (size, duration) を配信する。
フレームのペイロード自体は送らない。
"""

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from syncodec.config import EncoderConfig
from syncodec.session import DEFAULT_MAX_SESSIONS, SessionManager

logger = logging.getLogger(__name__)

# SessionManager のシングルトン（lifespan で上限を環境変数から再設定）
session_manager = SessionManager()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """アプリケーションのライフサイクル管理."""
    global session_manager

    max_sessions = int(
        os.environ.get("SYNCODEC_MAX_SESSIONS", str(DEFAULT_MAX_SESSIONS))
    )
    session_manager = SessionManager(max_sessions=max_sessions)
    logger.info("syncodec server starting (max_sessions=%d)", max_sessions)
    yield
    logger.info("syncodec server shutting down")
    await session_manager.stop_all()


app = FastAPI(
    title="syncodec",
    description="Statistical video encoder: synthetic frame sizes and timing",
    version="0.1.0",
    lifespan=lifespan,
)


# ============================================================
# ヘルスチェック
# ============================================================


@app.get("/api/healthz")
async def healthz() -> dict:
    """ヘルスチェック."""
    return {
        "status": "healthy",
        "active_sessions": session_manager.active_count,
        "max_sessions": session_manager.max_sessions,
    }


# ============================================================
# REST API: エンコーダセッション管理
# ============================================================


class CreateEncoderRequest(BaseModel):
    """エンコーダセッション作成リクエスト."""

    session_id: str
    target_bitrate_bps: int = Field(default=1_000_000, ge=0)
    frames_per_second: int = Field(default=30, gt=0)
    reaction_latency: float = Field(default=0.2, ge=0)
    burst_frame_count: int = Field(default=8, ge=0)
    burst_frame_size: int = Field(default=13_500, ge=1)
    size_noise_scale: float = 0.15
    duration_noise_scale: float = 0.15
    seed: int | None = None


class SetBitrateRequest(BaseModel):
    """ビットレート変更リクエスト."""

    target_bitrate_bps: int = Field(ge=0)


@app.post("/api/encoders", status_code=201)
async def create_encoder(req: CreateEncoderRequest) -> dict:
    """エンコーダセッション作成."""
    try:
        config = EncoderConfig(
            target_bitrate_bps=req.target_bitrate_bps,
            frames_per_second=req.frames_per_second,
            reaction_latency=req.reaction_latency,
            burst_frame_count=req.burst_frame_count,
            burst_frame_size=req.burst_frame_size,
            size_noise_scale=req.size_noise_scale,
            duration_noise_scale=req.duration_noise_scale,
            seed=req.seed,
        )
        session = await session_manager.create(
            session_id=req.session_id,
            config=config,
        )
        return {
            "session_id": session.session_id,
            "status": session.status,
            "ws_url": f"/api/ws/frames/{session.session_id}",
        }
    except ValueError as e:
        return JSONResponse(status_code=409, content={"error": str(e)})
    except RuntimeError as e:
        return JSONResponse(status_code=503, content={"error": str(e)})
    except Exception as e:
        logger.exception("Unexpected error creating session %s", req.session_id)
        return JSONResponse(status_code=500, content={"error": str(e)})


@app.get("/api/encoders")
async def list_encoders() -> list[dict]:
    """アクティブセッション一覧."""
    return session_manager.list_sessions()


@app.get("/api/encoders/{session_id}")
async def get_encoder(session_id: str) -> dict:
    """セッション情報取得."""
    session = session_manager.get(session_id)
    if session is None:
        return JSONResponse(status_code=404, content={"error": "Session not found"})
    return session.snapshot()


@app.put("/api/encoders/{session_id}/bitrate", status_code=202)
async def set_bitrate(session_id: str, req: SetBitrateRequest) -> dict:
    """ビットレート変更要求.

    reaction_latency 内の要求はエンコーダ側で捨てられるため、
    応答の target_bitrate_bps は変更前の値のこともある。
    """
    session = session_manager.get(session_id)
    if session is None:
        return JSONResponse(status_code=404, content={"error": "Session not found"})
    session.set_target_bitrate(req.target_bitrate_bps)
    return {
        "session_id": session_id,
        "requested_bitrate_bps": req.target_bitrate_bps,
        "target_bitrate_bps": session.target_bitrate_bps,
    }


@app.delete("/api/encoders/{session_id}")
async def delete_encoder(session_id: str) -> dict:
    """セッション停止."""
    try:
        await session_manager.stop(session_id)
        return {"session_id": session_id, "status": "stopped"}
    except KeyError:
        return JSONResponse(status_code=404, content={"error": "Session not found"})


# ============================================================
# WebSocket: フレームイベント配信
# ============================================================


@app.websocket("/api/ws/frames/{session_id}")
async def ws_frames(websocket: WebSocket, session_id: str):
    """生成フレームの (size, duration_ms) を JSON で配信."""
    session = session_manager.get(session_id)
    if session is None:
        await websocket.close(code=4004, reason="Session not found")
        return

    await websocket.accept()
    logger.info("WebSocket client connected for session %s", session_id)

    try:
        async for frame in session.subscribe():
            await websocket.send_json(
                {"size": frame.size, "duration_ms": frame.duration_ms}
            )
    except WebSocketDisconnect:
        logger.info("WebSocket client disconnected for session %s", session_id)
    except Exception:
        logger.exception("WebSocket error for session %s", session_id)
    finally:
        logger.info("WebSocket client ended for session %s", session_id)
