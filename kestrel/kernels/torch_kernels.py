"""Kernel set written as torch tensor programs.

Each kernel has the same signature as its Triton counterpart and obeys
the same launch contract: it only writes output elements whose lane index
falls inside the launch shape, so an under-sized launch leaves the tail
of the output untouched, exactly as on the accelerator. All buffers are
flat float32 tensors; 2-D views are taken over them where needed.

The serial reducers (rmsnorm, softmax) compute their reduction in full
before the first output write, which makes in-place calls safe.
"""
from __future__ import annotations

import math

import torch

from kestrel.config.device import RopeVariant
from kestrel.device.launch import LaunchShape

__all__ = [
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


def _softmax_rows_(scores: torch.Tensor) -> None:
    """Numerically stable softmax over the last dim, in place."""
    mx = scores.max(dim=-1, keepdim=True).values
    scores.sub_(mx).exp_()
    scores.div_(scores.sum(dim=-1, keepdim=True))


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
    r = min(int(rows), shape.lanes_y)
    c = min(int(cols), shape.lanes_x)
    if r <= 0 or c <= 0:
        return
    a2 = a[: rows * width].view(rows, width)[:r]
    b2 = b[: width * cols].view(width, cols)[:, :c]
    out[: rows * cols].view(rows, cols)[:r, :c].copy_(a2 @ b2)


def copy(shape: LaunchShape, dest: torch.Tensor, src: torch.Tensor, n: int) -> None:
    """dest[i] = src[i]."""
    m = min(int(n), shape.lanes)
    dest[:m].copy_(src[:m])


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
    xs = x[:n]
    scale = torch.rsqrt(torch.sum(xs * xs) / n + eps)
    out[:n].copy_(weight[offset : offset + n] * scale * xs)


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
    """Rotate every (2i, 2i+1) pair of every head of q and k by row pos.

    One lane per pair; pairs are numbered head-major.
    """
    half = head_size // 2
    pairs = min(n_heads * half, shape.lanes)
    if pairs <= 0:
        return
    cos = freq_real[pos * half : (pos + 1) * half].repeat(n_heads)[:pairs]
    sin = freq_imag[pos * half : (pos + 1) * half].repeat(n_heads)[:pairs]
    for vec in (q, k):
        p = vec[: n_heads * head_size].view(-1, 2)[:pairs]
        x0 = p[:, 0].clone()
        x1 = p[:, 1].clone()
        p[:, 0].copy_(x0 * cos - x1 * sin)
        if variant == RopeVariant.REFERENCE:
            p[:, 1].copy_(x0 * cos + x1 * cos)
        else:
            p[:, 1].copy_(x0 * sin + x1 * cos)


def softmax(shape: LaunchShape, arr: torch.Tensor, n: int) -> None:
    """Normalize arr[:n] in place: max, shift-exponentiate, sum, divide."""
    if shape.lanes < 1 or n <= 0:
        return
    _softmax_rows_(arr[:n])


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
    """Causal attention of q over cache positions 0..=pos, one lane per head.

    For each head: scores into att, softmax over pos+1 scores, then the
    score-weighted sum of cached values into the head's slice of xb.
    """
    heads = min(int(n_heads), shape.lanes)
    if heads <= 0:
        return
    n_pos = pos + 1
    loff = layer * seq_len * dim
    keys = key_cache[loff : loff + n_pos * dim].view(n_pos, n_heads, head_size)
    values = value_cache[loff : loff + n_pos * dim].view(n_pos, n_heads, head_size)
    qh = q[:dim].view(n_heads, head_size)[:heads]

    scores = att[: n_heads * seq_len].view(n_heads, seq_len)[:heads, :n_pos]
    scores.copy_(torch.einsum("thd,hd->ht", keys[:, :heads], qh))
    scores.div_(math.sqrt(head_size))
    _softmax_rows_(scores)

    mixed = torch.einsum("ht,thd->hd", scores, values[:, :heads])
    xb[: heads * head_size].view(heads, head_size).copy_(mixed)


def array_add(shape: LaunchShape, x: torch.Tensor, y: torch.Tensor, n: int) -> None:
    """x[i] += y[i]."""
    m = min(int(n), shape.lanes)
    x[:m].add_(y[:m])


def array_mult(shape: LaunchShape, x: torch.Tensor, y: torch.Tensor, n: int) -> None:
    """x[i] *= y[i]."""
    m = min(int(n), shape.lanes)
    x[:m].mul_(y[:m])


def silu(shape: LaunchShape, x: torch.Tensor, n: int) -> None:
    """x[i] = x[i] * sigmoid(x[i])."""
    m = min(int(n), shape.lanes)
    xs = x[:m]
    xs.mul_(torch.sigmoid(xs))
