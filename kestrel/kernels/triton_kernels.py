"""Kernel set as Triton programs for CUDA.

The system must import and type-check without Triton installed, so the
JIT programs are only defined when Triton is present; compiled() reports
whether they exist. The launch wrappers below have the same signatures as
kestrel.kernels.torch_kernels and translate a LaunchShape into a Triton
grid:
- elementwise kernels: one program per block, one lane per element
- matmul: a 2-D grid of TILE×TILE output tiles, one lane per output cell
  with a serial reduction over width
- rmsnorm/softmax: a single program that finishes its reduction before
  writing
- attention: one program per head, three barrier-separated phases
"""
from __future__ import annotations

import math
from typing import TYPE_CHECKING, Callable, Protocol, cast

import torch

from kestrel.config.device import RopeVariant
from kestrel.device.launch import LaunchShape
from kestrel.kernels.runtime import TRITON_AVAILABLE

__all__ = [
    "compiled",
    "matmul",
    "copy",
    "rmsnorm",
    "apply_rope",
    "softmax",
    "multi_head_attention",
    "array_add",
    "array_mult",
    "silu",
]

# Width of the vector a single reducing program sweeps per iteration.
REDUCE_BLOCK = 1024
# Cache positions scored per attention iteration.
ATTN_BLOCK_T = 64


class _Kernel(Protocol):
    """Minimal Triton kernel interface (`kernel[grid](...)`)."""
    def __getitem__(self, grid: tuple[int, ...]) -> Callable[..., object]: ...


# Placeholders so imports succeed even when Triton isn't available.
_matmul_kernel: object | None = None
_copy_kernel: object | None = None
_rmsnorm_kernel: object | None = None
_rope_kernel: object | None = None
_softmax_kernel: object | None = None
_attention_kernel: object | None = None
_array_add_kernel: object | None = None
_array_mult_kernel: object | None = None
_silu_kernel: object | None = None


# Hide Triton code from type checker (TYPE_CHECKING=True) but load at runtime when available.
if not TYPE_CHECKING and TRITON_AVAILABLE:
    try:  # pyright: ignore[reportUnreachable]
        import triton
        import triton.language as tl
    except (ImportError, ModuleNotFoundError):
        pass
    else:
        @triton.jit
        def _matmul_kernel(
            out_ptr, a_ptr, b_ptr,
            width, cols, row_limit, col_limit,
            TILE: tl.constexpr,
        ):
            """C[r, c] = sum_i A[r, i] * B[i, c] for one TILE×TILE tile."""
            r = tl.program_id(1) * TILE + tl.arange(0, TILE)
            c = tl.program_id(0) * TILE + tl.arange(0, TILE)
            rmask = r < row_limit
            cmask = c < col_limit
            acc = tl.zeros((TILE, TILE), dtype=tl.float32)
            for i in range(0, width):
                a = tl.load(a_ptr + r * width + i, mask=rmask, other=0.0)
                b = tl.load(b_ptr + i * cols + c, mask=cmask, other=0.0)
                acc += a[:, None] * b[None, :]
            tl.store(
                out_ptr + r[:, None] * cols + c[None, :],
                acc,
                mask=rmask[:, None] & cmask[None, :],
            )

        @triton.jit
        def _copy_kernel(dest_ptr, src_ptr, limit, BLOCK: tl.constexpr):
            offs = tl.program_id(0) * BLOCK + tl.arange(0, BLOCK)
            m = offs < limit
            tl.store(dest_ptr + offs, tl.load(src_ptr + offs, mask=m), mask=m)

        @triton.jit
        def _rmsnorm_kernel(out_ptr, x_ptr, w_ptr, offset, n, eps, BLOCK: tl.constexpr):
            acc = tl.zeros((BLOCK,), dtype=tl.float32)
            for start in range(0, n, BLOCK):
                idx = start + tl.arange(0, BLOCK)
                x = tl.load(x_ptr + idx, mask=idx < n, other=0.0)
                acc += x * x
            scale = 1.0 / tl.sqrt(tl.sum(acc, axis=0) / n + eps)
            tl.debug_barrier()
            for start in range(0, n, BLOCK):
                idx = start + tl.arange(0, BLOCK)
                m = idx < n
                x = tl.load(x_ptr + idx, mask=m, other=0.0)
                w = tl.load(w_ptr + offset + idx, mask=m, other=0.0)
                tl.store(out_ptr + idx, w * scale * x, mask=m)

        @triton.jit
        def _rope_kernel(
            q_ptr, k_ptr, fr_ptr, fi_ptr,
            pos, half, limit,
            BLOCK: tl.constexpr,
            REFERENCE: tl.constexpr,
        ):
            p = tl.program_id(0) * BLOCK + tl.arange(0, BLOCK)
            m = p < limit
            i = p % half
            fcr = tl.load(fr_ptr + pos * half + i, mask=m, other=0.0)
            fci = tl.load(fi_ptr + pos * half + i, mask=m, other=0.0)

            q0 = tl.load(q_ptr + 2 * p, mask=m, other=0.0)
            q1 = tl.load(q_ptr + 2 * p + 1, mask=m, other=0.0)
            k0 = tl.load(k_ptr + 2 * p, mask=m, other=0.0)
            k1 = tl.load(k_ptr + 2 * p + 1, mask=m, other=0.0)
            if REFERENCE:
                q1n = q0 * fcr + q1 * fcr
                k1n = k0 * fcr + k1 * fcr
            else:
                q1n = q0 * fci + q1 * fcr
                k1n = k0 * fci + k1 * fcr
            tl.store(q_ptr + 2 * p, q0 * fcr - q1 * fci, mask=m)
            tl.store(q_ptr + 2 * p + 1, q1n, mask=m)
            tl.store(k_ptr + 2 * p, k0 * fcr - k1 * fci, mask=m)
            tl.store(k_ptr + 2 * p + 1, k1n, mask=m)

        @triton.jit
        def _softmax_kernel(arr_ptr, n, BLOCK: tl.constexpr):
            m_acc = tl.full((BLOCK,), float("-inf"), tl.float32)
            for start in range(0, n, BLOCK):
                idx = start + tl.arange(0, BLOCK)
                v = tl.load(arr_ptr + idx, mask=idx < n, other=float("-inf"))
                m_acc = tl.maximum(m_acc, v)
            mx = tl.max(m_acc, axis=0)
            s_acc = tl.zeros((BLOCK,), dtype=tl.float32)
            for start in range(0, n, BLOCK):
                idx = start + tl.arange(0, BLOCK)
                v = tl.load(arr_ptr + idx, mask=idx < n, other=float("-inf"))
                s_acc += tl.exp(v - mx)
            total = tl.sum(s_acc, axis=0)
            tl.debug_barrier()
            for start in range(0, n, BLOCK):
                idx = start + tl.arange(0, BLOCK)
                m = idx < n
                v = tl.load(arr_ptr + idx, mask=m, other=float("-inf"))
                tl.store(arr_ptr + idx, tl.exp(v - mx) / total, mask=m)

        @triton.jit
        def _attention_kernel(
            xb_ptr, att_ptr, q_ptr, k_ptr, v_ptr,
            loff, dim, n_pos, head_size, seq_len, scale,
            BLOCK_T: tl.constexpr,
            BLOCK_D: tl.constexpr,
        ):
            h = tl.program_id(0)
            d = tl.arange(0, BLOCK_D)
            dmask = d < head_size
            q = tl.load(q_ptr + h * head_size + d, mask=dmask, other=0.0)
            row = att_ptr + h * seq_len
            base = loff + h * head_size

            # Phase 1: raw scores for positions 0..=pos.
            m_acc = tl.full((BLOCK_T,), float("-inf"), tl.float32)
            for start in range(0, n_pos, BLOCK_T):
                t = start + tl.arange(0, BLOCK_T)
                tmask = t < n_pos
                k = tl.load(
                    k_ptr + base + t[:, None] * dim + d[None, :],
                    mask=tmask[:, None] & dmask[None, :],
                    other=0.0,
                )
                s = tl.sum(k * q[None, :], axis=1) * scale
                s = tl.where(tmask, s, float("-inf"))
                tl.store(row + t, s, mask=tmask)
                m_acc = tl.maximum(m_acc, s)
            mx = tl.max(m_acc, axis=0)
            tl.debug_barrier()

            # Phase 2: softmax denominator.
            s_acc = tl.zeros((BLOCK_T,), dtype=tl.float32)
            for start in range(0, n_pos, BLOCK_T):
                t = start + tl.arange(0, BLOCK_T)
                s = tl.load(row + t, mask=t < n_pos, other=float("-inf"))
                s_acc += tl.exp(s - mx)
            total = tl.sum(s_acc, axis=0)
            tl.debug_barrier()

            # Phase 3: normalize scores and mix cached values.
            acc = tl.zeros((BLOCK_D,), dtype=tl.float32)
            for start in range(0, n_pos, BLOCK_T):
                t = start + tl.arange(0, BLOCK_T)
                tmask = t < n_pos
                s = tl.load(row + t, mask=tmask, other=float("-inf"))
                p = tl.exp(s - mx) / total
                tl.store(row + t, p, mask=tmask)
                v = tl.load(
                    v_ptr + base + t[:, None] * dim + d[None, :],
                    mask=tmask[:, None] & dmask[None, :],
                    other=0.0,
                )
                acc += tl.sum(p[:, None] * v, axis=0)
            tl.store(xb_ptr + h * head_size + d, acc, mask=dmask)

        @triton.jit
        def _array_add_kernel(x_ptr, y_ptr, limit, BLOCK: tl.constexpr):
            offs = tl.program_id(0) * BLOCK + tl.arange(0, BLOCK)
            m = offs < limit
            x = tl.load(x_ptr + offs, mask=m)
            y = tl.load(y_ptr + offs, mask=m)
            tl.store(x_ptr + offs, x + y, mask=m)

        @triton.jit
        def _array_mult_kernel(x_ptr, y_ptr, limit, BLOCK: tl.constexpr):
            offs = tl.program_id(0) * BLOCK + tl.arange(0, BLOCK)
            m = offs < limit
            x = tl.load(x_ptr + offs, mask=m)
            y = tl.load(y_ptr + offs, mask=m)
            tl.store(x_ptr + offs, x * y, mask=m)

        @triton.jit
        def _silu_kernel(x_ptr, limit, BLOCK: tl.constexpr):
            offs = tl.program_id(0) * BLOCK + tl.arange(0, BLOCK)
            m = offs < limit
            x = tl.load(x_ptr + offs, mask=m)
            tl.store(x_ptr + offs, x * (1.0 / (1.0 + tl.exp(-x))), mask=m)


def compiled() -> bool:
    """Whether the Triton programs were defined in this process."""
    return _matmul_kernel is not None


def _k(kernel: object | None) -> _Kernel:
    if kernel is None:
        raise RuntimeError("Triton kernels are not available in this process")
    return cast(_Kernel, kernel)


def _next_pow2(n: int) -> int:
    """Round up to the next power of 2 (Triton block widths)."""
    n = int(n)
    if n <= 1:
        return 1
    return 1 << (n - 1).bit_length()


def _elementwise_grid(shape: LaunchShape, n: int) -> tuple[tuple[int], int, int]:
    """Grid, block width and write limit for a 1-D elementwise launch."""
    return (shape.grid[0],), _next_pow2(shape.block[0]), min(int(n), shape.lanes)


def matmul(
    shape: LaunchShape,
    out: torch.Tensor,
    a: torch.Tensor,
    b: torch.Tensor,
    width: int,
    rows: int,
    cols: int,
) -> None:
    """out[rows, cols] = a[rows, width] @ b[width, cols]."""
    tile = _next_pow2(max(shape.block[0], shape.block[1]))
    _k(_matmul_kernel)[(shape.grid[0], shape.grid[1])](
        out, a, b,
        int(width), int(cols),
        min(int(rows), shape.lanes_y), min(int(cols), shape.lanes_x),
        TILE=tile,
    )


def copy(shape: LaunchShape, dest: torch.Tensor, src: torch.Tensor, n: int) -> None:
    """dest[i] = src[i]."""
    grid, block, limit = _elementwise_grid(shape, n)
    _k(_copy_kernel)[grid](dest, src, limit, BLOCK=block)


def rmsnorm(
    shape: LaunchShape,
    out: torch.Tensor,
    x: torch.Tensor,
    weight: torch.Tensor,
    offset: int,
    n: int,
    eps: float,
) -> None:
    """out[k] = weight[offset + k] * x[k] / sqrt(mean(x^2) + eps)."""
    if shape.lanes < 1:
        return
    _k(_rmsnorm_kernel)[(1,)](
        out, x, weight, int(offset), int(n), float(eps),
        BLOCK=min(REDUCE_BLOCK, _next_pow2(n)),
    )


def apply_rope(
    shape: LaunchShape,
    q: torch.Tensor,
    k: torch.Tensor,
    freq_real: torch.Tensor,
    freq_imag: torch.Tensor,
    pos: int,
    n_heads: int,
    head_size: int,
    *,
    variant: RopeVariant = RopeVariant.ROTATION,
) -> None:
    """Rotate every (2i, 2i+1) pair of every head of q and k by row pos."""
    grid, block, limit = _elementwise_grid(shape, n_heads * (head_size // 2))
    _k(_rope_kernel)[grid](
        q, k, freq_real, freq_imag,
        int(pos), int(head_size // 2), limit,
        BLOCK=block,
        REFERENCE=variant == RopeVariant.REFERENCE,
    )


def softmax(shape: LaunchShape, arr: torch.Tensor, n: int) -> None:
    """Normalize arr[:n] in place."""
    if shape.lanes < 1 or n <= 0:
        return
    _k(_softmax_kernel)[(1,)](arr, int(n), BLOCK=min(REDUCE_BLOCK, _next_pow2(n)))


def multi_head_attention(
    shape: LaunchShape,
    xb: torch.Tensor,
    att: torch.Tensor,
    q: torch.Tensor,
    key_cache: torch.Tensor,
    value_cache: torch.Tensor,
    layer: int,
    dim: int,
    pos: int,
    head_size: int,
    seq_len: int,
    n_heads: int,
) -> None:
    """Causal attention of q over cache positions 0..=pos, one program per head."""
    heads = min(int(n_heads), shape.lanes)
    if heads <= 0:
        return
    _k(_attention_kernel)[(heads,)](
        xb, att, q, key_cache, value_cache,
        int(layer) * int(seq_len) * int(dim), int(dim), int(pos) + 1,
        int(head_size), int(seq_len), 1.0 / math.sqrt(head_size),
        BLOCK_T=ATTN_BLOCK_T,
        BLOCK_D=_next_pow2(head_size),
    )


def array_add(shape: LaunchShape, x: torch.Tensor, y: torch.Tensor, n: int) -> None:
    """x[i] += y[i]."""
    grid, block, limit = _elementwise_grid(shape, n)
    _k(_array_add_kernel)[grid](x, y, limit, BLOCK=block)


def array_mult(shape: LaunchShape, x: torch.Tensor, y: torch.Tensor, n: int) -> None:
    """x[i] *= y[i]."""
    grid, block, limit = _elementwise_grid(shape, n)
    _k(_array_mult_kernel)[grid](x, y, limit, BLOCK=block)


def silu(shape: LaunchShape, x: torch.Tensor, n: int) -> None:
    """x[i] = x[i] * sigmoid(x[i])."""
    grid, block, limit = _elementwise_grid(shape, n)
    _k(_silu_kernel)[grid](x, limit, BLOCK=block)
