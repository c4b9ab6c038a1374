"""ラプラス分布ノイズ.

フレームサイズ・フレーム間隔の揺らぎを表すゼロ平均のラプラス乱数を生成する。
サイズ用と間隔用で別インスタンス（別の乱数源）を使い、互いに独立させる。
"""

import math
import random
import time


class LaplaceNoise:
    """Laplace(0, scale) に従う乱数を返すサンプラ.

    2 つの独立な指数分布乱数の差として生成する。
    scale <= 0 の場合は常に 0 近傍の点質量になる（エラーにはしない）。

    Usage:
        noise = LaplaceNoise(0.15, seed=42)
        x = noise.sample()
    """

    def __init__(self, scale: float, *, seed: int | None = None):
        self._scale = scale
        if seed is None:
            seed = time.time_ns()
        self._rng = random.Random(seed)

    @property
    def scale(self) -> float:
        return self._scale

    def _uniform(self) -> float:
        # random() は [0, 1) なので (0, 1] に写して log(0) を避ける
        return 1.0 - self._rng.random()

    def sample(self) -> float:
        e1 = -self._scale * math.log(self._uniform())
        e2 = -self._scale * math.log(self._uniform())
        return e1 - e2
