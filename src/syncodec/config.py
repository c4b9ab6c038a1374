"""統計的エンコーダ設定."""

from collections.abc import Callable, Iterable
from dataclasses import dataclass, replace

DEFAULT_TARGET_BITRATE_BPS = 100_000_000
DEFAULT_FPS = 30
DEFAULT_REACTION_LATENCY = 0.2  # 秒
DEFAULT_BURST_FRAME_COUNT = 8
DEFAULT_BURST_FRAME_SIZE = 13_500  # 13.5 KB
DEFAULT_REFERENCE_FRAME_INTERVAL = 0.033  # 秒
DEFAULT_REFERENCE_FRAME_SIZE = 4_170  # 4.17 KB
DEFAULT_SIZE_NOISE_SCALE = 0.15
DEFAULT_DURATION_NOISE_SCALE = 0.15
DEFAULT_MIN_BITRATE_BPS = 150_000
DEFAULT_MAX_BITRATE_BPS = 150_000_000


@dataclass(frozen=True)
class EncoderConfig:
    """統計的エンコーダのパラメータ.

    生成後は読み取り専用。不正な値は生成時に ValueError となる。

    Attributes:
        target_bitrate_bps: 初期ターゲットビットレート (bps)
        frames_per_second: フレームレート (fps)
        reaction_latency: ビットレート変更を受け付ける最小間隔 (秒)
        burst_frame_count: ビットレート変更直後のバーストのフレーム数
        burst_frame_size: バースト先頭フレームのサイズ (bytes)
        reference_frame_interval: 起動後最初のフレームまでの待ち時間 (秒)
        reference_frame_size: 基準フレームサイズ (bytes)
        size_noise_scale: フレームサイズ揺らぎのラプラス分布スケール
        duration_noise_scale: フレーム間隔揺らぎのラプラス分布スケール
        min_bitrate_bps: 受け付けるビットレートの下限 (bps)
        max_bitrate_bps: 受け付けるビットレートの上限 (bps)
        seed: 乱数シード (None の場合は時刻から生成)
        enforce_rate_bounds: True の場合、変更要求を [min, max] に丸める
    """

    target_bitrate_bps: int = DEFAULT_TARGET_BITRATE_BPS
    frames_per_second: int = DEFAULT_FPS
    reaction_latency: float = DEFAULT_REACTION_LATENCY
    burst_frame_count: int = DEFAULT_BURST_FRAME_COUNT
    burst_frame_size: int = DEFAULT_BURST_FRAME_SIZE
    reference_frame_interval: float = DEFAULT_REFERENCE_FRAME_INTERVAL
    reference_frame_size: int = DEFAULT_REFERENCE_FRAME_SIZE
    size_noise_scale: float = DEFAULT_SIZE_NOISE_SCALE
    duration_noise_scale: float = DEFAULT_DURATION_NOISE_SCALE
    min_bitrate_bps: int = DEFAULT_MIN_BITRATE_BPS
    max_bitrate_bps: int = DEFAULT_MAX_BITRATE_BPS
    seed: int | None = None
    enforce_rate_bounds: bool = False

    def __post_init__(self) -> None:
        if self.frames_per_second <= 0:
            raise ValueError(
                f"frames_per_second must be > 0, got {self.frames_per_second}"
            )
        if self.burst_frame_count < 0:
            raise ValueError(
                f"burst_frame_count must be >= 0, got {self.burst_frame_count}"
            )
        if self.burst_frame_size < 1:
            raise ValueError(
                f"burst_frame_size must be >= 1, got {self.burst_frame_size}"
            )
        if self.reaction_latency < 0:
            raise ValueError(
                f"reaction_latency must be >= 0, got {self.reaction_latency}"
            )
        if self.reference_frame_interval < 0:
            raise ValueError(
                "reference_frame_interval must be >= 0, "
                f"got {self.reference_frame_interval}"
            )
        if self.min_bitrate_bps > self.max_bitrate_bps:
            raise ValueError(
                f"min_bitrate_bps ({self.min_bitrate_bps}) exceeds "
                f"max_bitrate_bps ({self.max_bitrate_bps})"
            )

    @property
    def nominal_frame_interval(self) -> float:
        """公称フレーム間隔 1/fps (秒)."""
        return 1.0 / self.frames_per_second


# ============================================================
# 名前付きオプション（1 オプション = 1 項目の上書き）
# ============================================================

EncoderOption = Callable[[EncoderConfig], EncoderConfig]


def with_frames_per_second(fps: int) -> EncoderOption:
    return lambda c: replace(c, frames_per_second=fps)


def with_target_bitrate(bps: int) -> EncoderOption:
    return lambda c: replace(c, target_bitrate_bps=bps)


def with_reaction_latency(seconds: float) -> EncoderOption:
    return lambda c: replace(c, reaction_latency=seconds)


def with_burst(frame_count: int, frame_size: int) -> EncoderOption:
    return lambda c: replace(
        c, burst_frame_count=frame_count, burst_frame_size=frame_size
    )


def with_reference_frame(interval: float, size: int) -> EncoderOption:
    return lambda c: replace(
        c, reference_frame_interval=interval, reference_frame_size=size
    )


def with_noise_scales(size_scale: float, duration_scale: float) -> EncoderOption:
    return lambda c: replace(
        c, size_noise_scale=size_scale, duration_noise_scale=duration_scale
    )


def with_rate_bounds(
    min_bps: int, max_bps: int, *, enforce: bool = False
) -> EncoderOption:
    return lambda c: replace(
        c,
        min_bitrate_bps=min_bps,
        max_bitrate_bps=max_bps,
        enforce_rate_bounds=enforce,
    )


def with_seed(seed: int | None) -> EncoderOption:
    return lambda c: replace(c, seed=seed)


def apply_options(
    config: EncoderConfig, options: Iterable[EncoderOption]
) -> EncoderConfig:
    """オプションを順番に適用した新しい設定を返す.

    Raises:
        ValueError: 適用結果が不変条件を満たさない場合
    """
    for opt in options:
        config = opt(config)
    return config
