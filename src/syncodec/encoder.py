"""統計的ビデオエンコーダ.

実際のエンコードは行わず、ターゲットビットレートに従うエンコーダが出しそうな
フレームサイズ・フレーム間隔を実時間で合成し、FrameWriter に渡す。

1 つの asyncio タスクが BitrateState を所有し、次の 3 つの起床要因を
1 つずつ処理する:
  - フレームタイマー: 直前フレームの duration 経過で次フレームを生成
  - ビットレート変更要求: キュー経由で受け取り、reaction_latency で間引く
  - 停止シグナル: close() でループを抜ける
"""

import asyncio
import logging
import random
import threading
import time
from typing import Protocol, runtime_checkable

from syncodec.config import EncoderConfig, EncoderOption, apply_options
from syncodec.frame import FrameWriter
from syncodec.generator import generate_frame
from syncodec.noise import LaplaceNoise
from syncodec.state import BitrateState

logger = logging.getLogger(__name__)


@runtime_checkable
class Codec(Protocol):
    """エンコーダを登録する上位層が要求する最小インターフェース."""

    def start(self) -> asyncio.Task:
        ...

    def close(self) -> None:
        ...

    def get_target_bitrate(self) -> int:
        ...

    def set_target_bitrate(self, rate_bps: int) -> None:
        ...


class StatisticalEncoder:
    """フレームを実時間ペースで合成するエンコーダ.

    Usage:
        encoder = StatisticalEncoder(writer, with_frames_per_second(60))
        task = encoder.start()
        encoder.set_target_bitrate(2_000_000)
        ...
        encoder.close()
        await task

    一度 close() したエンコーダは再起動できない。
    """

    def __init__(
        self,
        writer: FrameWriter,
        *options: EncoderOption,
        config: EncoderConfig | None = None,
    ):
        """
        Args:
            writer: 生成フレームの出力先
            *options: config に順番に適用する名前付きオプション
            config: ベース設定（省略時はデフォルト）

        Raises:
            ValueError: オプション適用後の設定が不正な場合
        """
        self._config = apply_options(config or EncoderConfig(), options)
        self._writer = writer
        self._state = BitrateState(self._config)

        seed = self._config.seed
        if seed is None:
            seed = time.time_ns()
        seeder = random.Random(seed)
        self._size_noise = LaplaceNoise(
            self._config.size_noise_scale, seed=seeder.getrandbits(64)
        )
        self._duration_noise = LaplaceNoise(
            self._config.duration_noise_scale, seed=seeder.getrandbits(64)
        )

        self._requests: asyncio.Queue[int] = asyncio.Queue()
        self._closed = asyncio.Event()
        self._close_lock = threading.Lock()
        self._close_requested = False
        self._loop: asyncio.AbstractEventLoop | None = None
        self._task: asyncio.Task | None = None
        self._started = False
        self._frames_emitted = 0

    @property
    def config(self) -> EncoderConfig:
        return self._config

    @property
    def state(self) -> BitrateState:
        return self._state

    @property
    def frames_emitted(self) -> int:
        return self._frames_emitted

    @property
    def is_closed(self) -> bool:
        return self._close_requested

    def get_target_bitrate(self) -> int:
        """現在のターゲットビットレート (bps). 任意のスレッドから呼べる."""
        return self._state.target_bitrate_bps

    def set_target_bitrate(self, rate_bps: int) -> None:
        """ビットレート変更を要求する.

        キューに積むだけで状態は直接変更しない。reaction_latency 内の
        要求はループ側で黙って捨てられるので、反映は get_target_bitrate()
        で確認する。任意のスレッドから呼べる。
        """
        loop = self._loop
        if loop is not None and not loop.is_closed():
            loop.call_soon_threadsafe(self._requests.put_nowait, rate_bps)
        else:
            self._requests.put_nowait(rate_bps)

    def start(self) -> asyncio.Task:
        """実行中のイベントループ上で run() をタスクとして起動する.

        Returns:
            キャンセル可能なループタスク

        Raises:
            RuntimeError: 既に起動済みの場合
        """
        if self._started or self._task is not None:
            raise RuntimeError("StatisticalEncoder is already started")
        self._task = asyncio.get_running_loop().create_task(
            self.run(), name="statistical-encoder"
        )
        return self._task

    def close(self) -> None:
        """停止を通知する. 2 回目以降は何もしない. 任意のスレッドから呼べる."""
        with self._close_lock:
            if self._close_requested:
                return
            self._close_requested = True

        loop = self._loop
        if loop is not None and not loop.is_closed():
            loop.call_soon_threadsafe(self._closed.set)
        else:
            self._closed.set()

    async def run(self) -> None:
        """スケジューリングループ本体. close() されるまで戻らない.

        Raises:
            RuntimeError: 既に実行済みの場合
        """
        if self._started:
            raise RuntimeError("StatisticalEncoder is already started")
        self._started = True

        loop = asyncio.get_running_loop()
        self._loop = loop
        cfg = self._config
        logger.info(
            "Statistical encoder starting (target=%d bps, fps=%d)",
            self._state.target_bitrate_bps,
            cfg.frames_per_second,
        )

        # 起動直後は基準間隔だけ待ってから最初のフレームを出す
        deadline = loop.time() + cfg.reference_frame_interval
        next_request = asyncio.ensure_future(self._requests.get())
        shutdown = asyncio.ensure_future(self._closed.wait())

        try:
            while True:
                timeout = max(0.0, deadline - loop.time())
                done, _ = await asyncio.wait(
                    {next_request, shutdown},
                    timeout=timeout,
                    return_when=asyncio.FIRST_COMPLETED,
                )

                if shutdown in done:
                    break

                if next_request in done:
                    self._state.request(next_request.result(), time.monotonic_ns())
                    next_request = asyncio.ensure_future(self._requests.get())
                    continue

                frame = generate_frame(
                    cfg, self._state, self._size_noise, self._duration_noise
                )
                self._writer.write_frame(frame)
                self._state.frame_emitted()
                self._frames_emitted += 1
                deadline = loop.time() + frame.duration

        except Exception:
            logger.exception("Statistical encoder loop failed")
            raise
        finally:
            next_request.cancel()
            shutdown.cancel()
            logger.info(
                "Statistical encoder stopped after %d frames", self._frames_emitted
            )
