"""次フレームの生成ロジック.

判定順:
  1. バースト開始: burst_frame_size の固定サイズ（キーフレーム相当）
  2. バースト継続: バースト全体のビット予算を残りフレームに配分したサイズ
  3. 定常: 公称サイズ・公称間隔にラプラスノイズを掛けたもの

バースト中の間隔は公称値 1/fps のまま（ノイズなし）。
"""

from syncodec.config import EncoderConfig
from syncodec.frame import Frame
from syncodec.noise import LaplaceNoise
from syncodec.state import BitrateState


def burst_continuation_size(config: EncoderConfig, target_bitrate_bps: int) -> int:
    """バースト継続フレームのサイズ (bytes).

    既存のテストベクタと一致させるため式はそのまま保持している
    (分子は bps、分母は bytes のまま)。
    """
    count = config.burst_frame_count
    size = (target_bitrate_bps * count) // (config.burst_frame_size + count - 1)
    return max(1, size)


def steady_bytes_per_frame(config: EncoderConfig, target_bitrate_bps: int) -> int:
    """定常状態の公称フレームサイズ (bytes, 切り捨て)."""
    return target_bitrate_bps // (8 * config.frames_per_second)


def generate_frame(
    config: EncoderConfig,
    state: BitrateState,
    size_noise: LaplaceNoise,
    duration_noise: LaplaceNoise,
) -> Frame:
    """現在の設定と状態から次のフレームを 1 枚作る.

    state は変更しない。出力後の残りバースト数の更新は
    呼び出し側 (BitrateState.frame_emitted) の責務。
    """
    nominal = config.nominal_frame_interval
    target = state.target_bitrate_bps

    if state.is_burst_start:
        return Frame(size=config.burst_frame_size, duration=nominal)

    if state.is_bursting:
        return Frame(size=burst_continuation_size(config, target), duration=nominal)

    bytes_per_frame = steady_bytes_per_frame(config, target)
    size = max(1.0, bytes_per_frame * (1.0 - size_noise.sample()))
    duration = max(0.0, nominal * (1.0 - duration_noise.sample()))
    return Frame(size=int(size), duration=duration)
