"""Unbiased, cryptographically secure winner selection helpers."""

from __future__ import annotations

import secrets
from typing import Callable, Hashable, Iterable, MutableSequence, Sequence, TypeVar

T = TypeVar("T")

RandBelow = Callable[[int], int]

ALGORITHM_NAME = "fisher-yates/secrets.randbelow"


def secure_shuffle(items: Iterable[T], randbelow: RandBelow = secrets.randbelow) -> list[T]:
    """Return a Fisher-Yates shuffled copy of ``items``.

    Each swap index comes from ``randbelow``, which defaults to
    :func:`secrets.randbelow` (OS entropy, rejection sampled, so no modulo
    bias).

    Parameters
    ----------
    items : Iterable[T]
        Items to shuffle; the input is not modified.
    randbelow : Callable[[int], int], optional
        Source of uniform integers in ``[0, n)``. Only tests should pass one.
    """

    arr: MutableSequence[T] = list(items)
    for i in range(len(arr) - 1, 0, -1):
        j = randbelow(i + 1)
        arr[i], arr[j] = arr[j], arr[i]
    return list(arr)


def pick_distinct(
    shuffled: Sequence[T],
    target: int,
    key: Callable[[T], Hashable],
) -> list[T]:
    """Walk ``shuffled`` and keep the first item of each ``key`` until ``target``.

    Returns fewer than ``target`` items when there are fewer distinct keys.
    """

    if target < 0:
        raise ValueError("target must be non-negative")

    picked: list[T] = []
    seen: set[Hashable] = set()
    for item in shuffled:
        if len(picked) >= target:
            break
        k = key(item)
        if k in seen:
            continue
        seen.add(k)
        picked.append(item)
    return picked


__all__ = ["ALGORITHM_NAME", "RandBelow", "pick_distinct", "secure_shuffle"]
