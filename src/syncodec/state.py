"""ビットレート状態とバースト状態遷移.

状態:
  - Steady: remaining_burst_frames == 0
  - Bursting: remaining_burst_frames > 0
    (remaining_burst_frames == burst_frame_count の瞬間がバースト開始)

書き込みはエンコーダのループからのみ行う。
target_bitrate_bps だけは外部スレッドから読めるようロックで保護する。
"""

import logging
import threading

from syncodec.config import EncoderConfig

logger = logging.getLogger(__name__)

NS_PER_SECOND = 1_000_000_000


class BitrateState:
    """現在のターゲットビットレート・最終更新時刻・残りバーストフレーム数."""

    def __init__(self, config: EncoderConfig):
        self._config = config
        self._lock = threading.Lock()
        self._target_bitrate_bps = config.target_bitrate_bps
        self._reaction_latency_ns = round(config.reaction_latency * NS_PER_SECOND)
        self._last_update_ns: int | None = None
        self._remaining_burst_frames = 0

    @property
    def target_bitrate_bps(self) -> int:
        with self._lock:
            return self._target_bitrate_bps

    @property
    def last_update_ns(self) -> int | None:
        """最後に受け付けた変更の時刻 (単調時計, ナノ秒)."""
        return self._last_update_ns

    @property
    def remaining_burst_frames(self) -> int:
        return self._remaining_burst_frames

    @property
    def is_bursting(self) -> bool:
        return self._remaining_burst_frames > 0

    @property
    def is_burst_start(self) -> bool:
        return (
            self._config.burst_frame_count > 0
            and self._remaining_burst_frames == self._config.burst_frame_count
        )

    def request(self, rate_bps: int, now_ns: int) -> bool:
        """ビットレート変更要求を評価する.

        前回の受付から reaction_latency 未満の要求は黙って捨てる。
        ちょうど reaction_latency 経過した要求は受け付ける (整数ナノ秒で比較)。

        Args:
            rate_bps: 新しいターゲットビットレート (bps)
            now_ns: 現在時刻 (単調時計, ナノ秒)

        Returns:
            受け付けた場合 True
        """
        cfg = self._config
        if (
            self._last_update_ns is not None
            and now_ns - self._last_update_ns < self._reaction_latency_ns
        ):
            return False

        if cfg.enforce_rate_bounds:
            rate_bps = min(max(rate_bps, cfg.min_bitrate_bps), cfg.max_bitrate_bps)

        with self._lock:
            previous = self._target_bitrate_bps
            self._target_bitrate_bps = rate_bps
        self._last_update_ns = now_ns
        self._remaining_burst_frames = cfg.burst_frame_count

        logger.debug(
            "Target bitrate changed %d -> %d bps (burst=%d frames)",
            previous,
            rate_bps,
            cfg.burst_frame_count,
        )
        return True

    def frame_emitted(self) -> None:
        """フレーム 1 枚の出力ごとに呼ぶ。バースト中なら残り数を 1 減らす."""
        if self._remaining_burst_frames > 0:
            self._remaining_burst_frames -= 1
