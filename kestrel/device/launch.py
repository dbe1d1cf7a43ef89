"""Launch shapes: how many parallel lanes a kernel invocation spawns.

A launch is a grid of blocks, each block a group of lanes. Elementwise
kernels use one lane per output element; matmul uses a 2-D grid of
square tiles; the serial reducers use a single lane. Shapes are not
stored anywhere, they are rebuilt from buffer sizes on every call.
"""
from __future__ import annotations

from dataclasses import dataclass


def cdiv(n: int, d: int) -> int:
    """Ceiling division for non-negative n and positive d."""
    return -(-int(n) // int(d))


@dataclass(frozen=True)
class LaunchShape:
    """Grid and block dimensions as (x, y, z) triples.

    x indexes columns and y indexes rows, the CUDA convention.
    """

    grid: tuple[int, int, int]
    block: tuple[int, int, int] = (1, 1, 1)

    @classmethod
    def for_num_elems(cls, n: int, block_size: int = 1024) -> "LaunchShape":
        """One lane per element, in 1-D blocks of block_size lanes."""
        n = max(1, int(n))
        block = min(int(block_size), n)
        return cls(grid=(cdiv(n, block), 1, 1), block=(block, 1, 1))

    @classmethod
    def tiled(cls, rows: int, cols: int, tile: int = 32) -> "LaunchShape":
        """A 2-D grid of tile×tile blocks covering a [rows, cols] output.

        Grid sizes round up so boundary tiles cover non-multiple sizes.
        """
        return cls(
            grid=(cdiv(cols, tile), cdiv(rows, tile), 1),
            block=(int(tile), int(tile), 1),
        )

    @classmethod
    def per_program(cls, n: int) -> "LaunchShape":
        """One single-lane program for each of n independent units."""
        return cls(grid=(int(n), 1, 1), block=(1, 1, 1))

    @classmethod
    def single(cls) -> "LaunchShape":
        """Exactly one lane."""
        return cls(grid=(1, 1, 1), block=(1, 1, 1))

    @property
    def lanes_x(self) -> int:
        """Lanes along x."""
        return self.grid[0] * self.block[0]

    @property
    def lanes_y(self) -> int:
        """Lanes along y."""
        return self.grid[1] * self.block[1]

    @property
    def lanes(self) -> int:
        """Total lane count."""
        gx, gy, gz = self.grid
        bx, by, bz = self.block
        return gx * gy * gz * bx * by * bz

    def is_valid(self) -> bool:
        """Every grid and block dimension is at least one."""
        return all(int(d) >= 1 for d in (*self.grid, *self.block))
