"""StatisticalEncoder（スケジューリングループ）のテスト.

実時間で動くため、fps を高め・基準間隔を短めにして高速に回す。
"""

import asyncio

import pytest

from syncodec.config import EncoderConfig, with_frames_per_second, with_seed
from syncodec.encoder import Codec, StatisticalEncoder
from syncodec.frame import Frame, FrameWriter


class RecordingWriter:
    """受け取ったフレームを記録する FrameWriter."""

    def __init__(self):
        self.frames: list[Frame] = []

    def write_frame(self, frame: Frame) -> None:
        self.frames.append(frame)


def _quiet_config(**kwargs) -> EncoderConfig:
    params = {
        "target_bitrate_bps": 1_000_000,
        "frames_per_second": 100,
        "reference_frame_interval": 0.05,
        "size_noise_scale": 0.0,
        "duration_noise_scale": 0.0,
        "burst_frame_count": 3,
        "burst_frame_size": 5_000,
        "seed": 1,
    }
    params.update(kwargs)
    return EncoderConfig(**params)


async def _wait_for_frames(writer: RecordingWriter, count: int, timeout: float = 2.0):
    async with asyncio.timeout(timeout):
        while len(writer.frames) < count:
            await asyncio.sleep(0.005)


# ============================================================
# 構築
# ============================================================


class TestConstruction:
    def test_options_are_applied(self):
        encoder = StatisticalEncoder(
            RecordingWriter(), with_frames_per_second(60), with_seed(3)
        )
        assert encoder.config.frames_per_second == 60
        assert encoder.config.seed == 3

    def test_options_override_base_config(self):
        encoder = StatisticalEncoder(
            RecordingWriter(),
            with_frames_per_second(24),
            config=EncoderConfig(frames_per_second=60, target_bitrate_bps=500_000),
        )
        assert encoder.config.frames_per_second == 24
        assert encoder.get_target_bitrate() == 500_000

    def test_invalid_option_prevents_construction(self):
        with pytest.raises(ValueError):
            StatisticalEncoder(RecordingWriter(), with_frames_per_second(0))

    def test_default_target_bitrate(self):
        encoder = StatisticalEncoder(RecordingWriter())
        assert encoder.get_target_bitrate() == 100_000_000

    def test_satisfies_codec_interface(self):
        encoder: Codec = StatisticalEncoder(RecordingWriter())
        assert isinstance(encoder, Codec)
        assert isinstance(RecordingWriter(), FrameWriter)


# ============================================================
# フレーム生成ループ
# ============================================================


class TestLoop:
    @pytest.mark.asyncio
    async def test_first_frame_waits_reference_interval(self):
        """最初のフレームは reference_frame_interval 経過後に出る."""
        writer = RecordingWriter()
        encoder = StatisticalEncoder(
            writer, config=_quiet_config(reference_frame_interval=0.3)
        )
        task = encoder.start()

        await asyncio.sleep(0.2)
        assert writer.frames == []

        await asyncio.sleep(0.15)
        assert len(writer.frames) >= 1

        encoder.close()
        await asyncio.wait_for(task, timeout=1.0)

    @pytest.mark.asyncio
    async def test_steady_frames_without_noise(self):
        """ノイズ 0 の定常状態は毎回同じフレーム."""
        writer = RecordingWriter()
        encoder = StatisticalEncoder(
            writer,
            config=_quiet_config(frames_per_second=30, reference_frame_interval=0.0),
        )
        task = encoder.start()

        await _wait_for_frames(writer, 3)
        encoder.close()
        await asyncio.wait_for(task, timeout=1.0)

        for frame in writer.frames:
            assert frame.size == 4_166
            assert frame.duration == pytest.approx(1 / 30)
        assert encoder.frames_emitted == len(writer.frames)

    @pytest.mark.asyncio
    async def test_first_frame_after_update_is_burst(self):
        """変更受付後の最初のフレームは burst_frame_size、その後定常に戻る."""
        writer = RecordingWriter()
        encoder = StatisticalEncoder(writer, config=_quiet_config())
        encoder.set_target_bitrate(2_000_000)
        task = encoder.start()

        await _wait_for_frames(writer, 5)
        encoder.close()
        await asyncio.wait_for(task, timeout=1.0)

        sizes = [f.size for f in writer.frames[:5]]
        assert sizes == [5_000, 1_199, 1_199, 2_500, 2_500]
        for frame in writer.frames[:3]:
            assert frame.duration == pytest.approx(0.01)
        assert encoder.state.remaining_burst_frames == 0

    @pytest.mark.asyncio
    async def test_back_to_back_updates_trigger_one_burst(self):
        """連続した 2 回の変更要求は 1 回目だけが反映される."""
        writer = RecordingWriter()
        encoder = StatisticalEncoder(writer, config=_quiet_config(reaction_latency=10.0))
        encoder.set_target_bitrate(2_000_000)
        encoder.set_target_bitrate(3_000_000)
        task = encoder.start()

        await _wait_for_frames(writer, 6)
        encoder.close()
        await asyncio.wait_for(task, timeout=1.0)

        sizes = [f.size for f in writer.frames]
        assert sizes.count(5_000) == 1
        assert encoder.get_target_bitrate() == 2_000_000

    @pytest.mark.asyncio
    async def test_update_accepted_after_reaction_latency(self):
        writer = RecordingWriter()
        encoder = StatisticalEncoder(writer, config=_quiet_config(reaction_latency=0.05))
        task = encoder.start()

        encoder.set_target_bitrate(2_000_000)
        await asyncio.sleep(0.1)
        encoder.set_target_bitrate(3_000_000)
        await asyncio.sleep(0.05)

        assert encoder.get_target_bitrate() == 3_000_000
        encoder.close()
        await asyncio.wait_for(task, timeout=1.0)

    @pytest.mark.asyncio
    async def test_set_target_bitrate_from_other_thread(self):
        writer = RecordingWriter()
        encoder = StatisticalEncoder(writer, config=_quiet_config())
        task = encoder.start()
        await asyncio.sleep(0.01)

        await asyncio.to_thread(encoder.set_target_bitrate, 7_000_000)
        async with asyncio.timeout(1.0):
            while encoder.get_target_bitrate() != 7_000_000:
                await asyncio.sleep(0.005)

        encoder.close()
        await asyncio.wait_for(task, timeout=1.0)

    @pytest.mark.asyncio
    async def test_frames_never_negative_with_heavy_noise(self):
        writer = RecordingWriter()
        encoder = StatisticalEncoder(
            writer,
            config=_quiet_config(
                frames_per_second=500,
                reference_frame_interval=0.0,
                size_noise_scale=3.0,
                duration_noise_scale=3.0,
            ),
        )
        task = encoder.start()
        await _wait_for_frames(writer, 20)
        encoder.close()
        await asyncio.wait_for(task, timeout=1.0)

        assert all(f.size >= 1 for f in writer.frames)
        assert all(f.duration >= 0.0 for f in writer.frames)


# ============================================================
# ライフサイクル
# ============================================================


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_close_stops_loop_promptly(self):
        """close() 後はすぐにループが終わり、以降フレームは出ない."""
        writer = RecordingWriter()
        encoder = StatisticalEncoder(
            writer, config=_quiet_config(frames_per_second=10, reference_frame_interval=0.0)
        )
        task = encoder.start()
        await _wait_for_frames(writer, 1)

        encoder.close()
        await asyncio.wait_for(task, timeout=0.2)

        emitted = len(writer.frames)
        await asyncio.sleep(0.15)
        assert len(writer.frames) == emitted

    @pytest.mark.asyncio
    async def test_close_before_start_returns_immediately(self):
        writer = RecordingWriter()
        encoder = StatisticalEncoder(writer, config=_quiet_config())
        encoder.close()
        await asyncio.wait_for(encoder.run(), timeout=0.2)
        assert writer.frames == []

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self):
        encoder = StatisticalEncoder(RecordingWriter(), config=_quiet_config())
        task = encoder.start()
        encoder.close()
        encoder.close()
        await asyncio.wait_for(task, timeout=1.0)
        assert encoder.is_closed

    @pytest.mark.asyncio
    async def test_start_twice_raises(self):
        encoder = StatisticalEncoder(RecordingWriter(), config=_quiet_config())
        task = encoder.start()
        with pytest.raises(RuntimeError, match="already started"):
            encoder.start()
        encoder.close()
        await asyncio.wait_for(task, timeout=1.0)

    @pytest.mark.asyncio
    async def test_not_restartable_after_close(self):
        encoder = StatisticalEncoder(RecordingWriter(), config=_quiet_config())
        task = encoder.start()
        encoder.close()
        await asyncio.wait_for(task, timeout=1.0)
        with pytest.raises(RuntimeError):
            await encoder.run()

    @pytest.mark.asyncio
    async def test_task_is_cancellable(self):
        encoder = StatisticalEncoder(RecordingWriter(), config=_quiet_config())
        task = encoder.start()
        await asyncio.sleep(0.02)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    @pytest.mark.asyncio
    async def test_writer_error_fails_task(self):
        class FailingWriter:
            def write_frame(self, frame):
                raise OSError("sink broken")

        encoder = StatisticalEncoder(
            FailingWriter(), config=_quiet_config(reference_frame_interval=0.0)
        )
        task = encoder.start()
        with pytest.raises(OSError, match="sink broken"):
            await asyncio.wait_for(task, timeout=1.0)
