"""エンコーダセッション管理.

StatisticalEncoder が生成するフレームを統計に集計しつつ、
複数の購読者にマルチキャスト配信する。
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from typing import Any

from syncodec.config import EncoderConfig
from syncodec.encoder import StatisticalEncoder
from syncodec.frame import Frame

logger = logging.getLogger(__name__)

# subscriber queue が満杯の場合はドロップ（遅いクライアントを待たない）
DEFAULT_QUEUE_SIZE = 200

# stop() でループ終了を待つ上限 (秒)
STOP_TIMEOUT = 5.0

DEFAULT_MAX_SESSIONS = 16

# sentinel: ストリーム終了を通知
_SENTINEL = None


class EncoderSession:
    """1 つの統計的エンコーダセッション.

    StatisticalEncoder → 統計集計 → マルチキャスト配信。
    セッション自身がエンコーダの FrameWriter になる。
    """

    def __init__(self, session_id: str, config: EncoderConfig | None = None):
        self._session_id = session_id
        self._config = config or EncoderConfig()
        self._created_at = time.time()
        self._encoder = StatisticalEncoder(self, config=self._config)
        self._subscribers: list[asyncio.Queue[Frame | None]] = []
        self._task: asyncio.Task | None = None
        self._status = "created"

        self._frames_emitted = 0
        self._bytes_emitted = 0
        self._last_frame: Frame | None = None

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def status(self) -> str:
        return self._status

    @property
    def config(self) -> EncoderConfig:
        return self._config

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    @property
    def created_at(self) -> float:
        """作成時刻 (Unix timestamp)."""
        return self._created_at

    @property
    def frames_emitted(self) -> int:
        return self._frames_emitted

    @property
    def bytes_emitted(self) -> int:
        return self._bytes_emitted

    @property
    def last_frame(self) -> Frame | None:
        return self._last_frame

    @property
    def target_bitrate_bps(self) -> int:
        return self._encoder.get_target_bitrate()

    def set_target_bitrate(self, rate_bps: int) -> None:
        """ビットレート変更要求をエンコーダに転送する（採否はエンコーダ次第）."""
        self._encoder.set_target_bitrate(rate_bps)

    def write_frame(self, frame: Frame) -> None:
        """エンコーダからのフレームを集計し、全 subscriber に配信する."""
        self._frames_emitted += 1
        self._bytes_emitted += frame.size
        self._last_frame = frame

        for queue in list(self._subscribers):
            try:
                queue.put_nowait(frame)
            except asyncio.QueueFull:
                pass  # 遅いクライアントはドロップ

    async def start(self) -> None:
        """セッション開始: エンコーダループをタスクとして起動."""
        if self._status != "created":
            raise RuntimeError(f"Cannot start session in {self._status} state")

        logger.info("Starting session %s", self._session_id)
        self._task = self._encoder.start()
        self._task.add_done_callback(self._on_encoder_done)
        self._status = "streaming"
        logger.info("Session %s is now streaming", self._session_id)

    def _on_encoder_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is None:
            return
        logger.error("Encoder for session %s failed: %r", self._session_id, exc)
        if self._status == "streaming":
            self._status = "failed"
            self._end_subscribers()

    def _end_subscribers(self) -> None:
        """全 subscriber に終了通知を送り、リストを空にする."""
        for queue in self._subscribers:
            try:
                queue.put_nowait(_SENTINEL)
            except asyncio.QueueFull:
                # 満杯なら最古を捨てて終了通知を優先
                queue.get_nowait()
                queue.put_nowait(_SENTINEL)
        self._subscribers.clear()

    async def stop(self) -> None:
        """セッション停止: エンコーダ停止 + 全 subscriber に終了通知."""
        if self._status in ("stopped", "stopping"):
            return

        self._status = "stopping"
        logger.info("Stopping session %s", self._session_id)

        self._encoder.close()

        if self._task and not self._task.done():
            try:
                await asyncio.wait_for(self._task, timeout=STOP_TIMEOUT)
            except asyncio.TimeoutError:
                logger.warning(
                    "Encoder for session %s did not stop in %.1fs, cancelling",
                    self._session_id,
                    STOP_TIMEOUT,
                )
            except asyncio.CancelledError:
                pass
            except Exception:
                logger.exception("Encoder error in session %s", self._session_id)

        self._end_subscribers()

        self._status = "stopped"
        logger.info(
            "Session %s stopped (frames=%d, bytes=%d)",
            self._session_id,
            self._frames_emitted,
            self._bytes_emitted,
        )

    async def subscribe(
        self, *, queue_size: int = DEFAULT_QUEUE_SIZE
    ) -> AsyncIterator[Frame]:
        """生成フレームの購読を開始する.

        Yields:
            購読開始以降に生成された Frame
        """
        if self._status in ("stopped", "failed"):
            return

        queue: asyncio.Queue[Frame | None] = asyncio.Queue(maxsize=queue_size)
        self._subscribers.append(queue)
        logger.info(
            "Session %s: subscriber added (total=%d)",
            self._session_id,
            len(self._subscribers),
        )

        try:
            while True:
                frame = await queue.get()
                if frame is _SENTINEL:
                    break
                yield frame
        finally:
            if queue in self._subscribers:
                self._subscribers.remove(queue)
                logger.info(
                    "Session %s: subscriber removed (total=%d)",
                    self._session_id,
                    len(self._subscribers),
                )

    def snapshot(self) -> dict[str, Any]:
        """一覧・API 応答用のメタデータ."""
        last = self._last_frame
        return {
            "session_id": self._session_id,
            "status": self._status,
            "target_bitrate_bps": self.target_bitrate_bps,
            "frames_per_second": self._config.frames_per_second,
            "frames_emitted": self._frames_emitted,
            "bytes_emitted": self._bytes_emitted,
            "last_frame": (
                {"size": last.size, "duration_ms": last.duration_ms}
                if last is not None
                else None
            ),
            "subscribers": self.subscriber_count,
            "created_at": self._created_at,
        }


class SessionManager:
    """エンコーダセッションの管理.

    セッションの作成・停止・取得・一覧を提供する。
    """

    def __init__(self, max_sessions: int = DEFAULT_MAX_SESSIONS):
        self._sessions: dict[str, EncoderSession] = {}
        self._max_sessions = max_sessions
        self._lock = asyncio.Lock()

    @property
    def max_sessions(self) -> int:
        return self._max_sessions

    @property
    def active_count(self) -> int:
        return len(self._sessions)

    async def create(
        self,
        session_id: str,
        config: EncoderConfig | None = None,
    ) -> EncoderSession:
        """セッション作成: エンコーダ起動.

        Args:
            session_id: セッション識別子
            config: エンコーダ設定（省略時はデフォルト）

        Returns:
            起動済みの EncoderSession

        Raises:
            ValueError: 既に同じ session_id が存在する場合
            RuntimeError: セッション数が上限に達している場合
        """
        async with self._lock:
            if session_id in self._sessions:
                raise ValueError(f"Session {session_id} already exists")
            if len(self._sessions) >= self._max_sessions:
                raise RuntimeError(
                    f"Session limit reached ({self._max_sessions})"
                )

            session = EncoderSession(session_id, config)
            await session.start()
            self._sessions[session_id] = session

            logger.info("Session %s created", session_id)
            return session

    async def stop(self, session_id: str) -> None:
        """セッション停止.

        Raises:
            KeyError: セッションが存在しない場合
        """
        async with self._lock:
            session = self._sessions.pop(session_id, None)
            if session is None:
                raise KeyError(f"Session {session_id} not found")

        # ロック外で停止（ループ終了待ちがある）
        try:
            await session.stop()
        except Exception:
            logger.exception("Error stopping session %s", session_id)

        logger.info("Session %s stopped and removed", session_id)

    def get(self, session_id: str) -> EncoderSession | None:
        """セッション取得."""
        return self._sessions.get(session_id)

    def list_sessions(self) -> list[dict]:
        """アクティブセッション一覧（メタデータ付き）."""
        return [s.snapshot() for s in self._sessions.values()]

    async def stop_all(self) -> None:
        """全セッション停止."""
        async with self._lock:
            session_ids = list(self._sessions.keys())

        for sid in session_ids:
            try:
                await self.stop(sid)
            except Exception:
                logger.exception("Error stopping session %s", sid)
