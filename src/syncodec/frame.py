"""合成フレームとフレーム出力先のインターフェース."""

from dataclasses import dataclass
from typing import Protocol, runtime_checkable


@dataclass(frozen=True)
class Frame:
    """統計的エンコーダが生成する 1 フレーム.

    Attributes:
        size: フレームサイズ (bytes)
        duration: このフレームが占める時間 (秒)
    """

    size: int
    duration: float

    @property
    def duration_ms(self) -> float:
        return self.duration * 1000.0

    @property
    def content(self) -> bytes:
        """意味を持たないペイロード（size バイトのゼロ埋め）."""
        return bytes(self.size)


@runtime_checkable
class FrameWriter(Protocol):
    """フレームの受け取り先.

    エンコーダのループ上で生成順に 1 フレームずつ呼ばれる。
    ここでブロックすると以降のフレーム生成が止まる。
    """

    def write_frame(self, frame: Frame) -> None:
        ...
