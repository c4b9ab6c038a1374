"""syncodec: Statistical video encoder that fabricates frame sizes and timing."""

from syncodec.config import (
    EncoderConfig,
    apply_options,
    with_burst,
    with_frames_per_second,
    with_noise_scales,
    with_rate_bounds,
    with_reaction_latency,
    with_reference_frame,
    with_seed,
    with_target_bitrate,
)
from syncodec.encoder import Codec, StatisticalEncoder
from syncodec.frame import Frame, FrameWriter
from syncodec.generator import generate_frame
from syncodec.noise import LaplaceNoise
from syncodec.session import EncoderSession, SessionManager
from syncodec.state import BitrateState

__all__ = [
    "BitrateState",
    "Codec",
    "EncoderConfig",
    "EncoderSession",
    "Frame",
    "FrameWriter",
    "LaplaceNoise",
    "SessionManager",
    "StatisticalEncoder",
    "apply_options",
    "generate_frame",
    "with_burst",
    "with_frames_per_second",
    "with_noise_scales",
    "with_rate_bounds",
    "with_reaction_latency",
    "with_reference_frame",
    "with_seed",
    "with_target_bitrate",
]
