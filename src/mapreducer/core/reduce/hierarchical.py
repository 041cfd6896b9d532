"""
Hierarchical (tree) reduction.

Items are split into contiguous left-to-right groups of at most `group_size`, each group
is combined concurrently, and the outputs (in group order) become the next round's items.
Rounds repeat until one group remains, so N items finish in ceil(log_G(N)) rounds for
G >= 2. Rounds run in a loop rather than by recursion.
"""

from __future__ import annotations
from collections.abc import Awaitable, Callable, Sequence
from typing import TypeVar
import logging

from mapreducer.utils.concurrency.gather import gather_or_cancel

logger = logging.getLogger(__name__)

T = TypeVar("T")

SEPARATOR = "\n\n---\n\n"

Combine = Callable[[list[T]], Awaitable[T]]
RoundHook = Callable[[int, list[list[T]]], None]


def partition(items: Sequence[T], group_size: int) -> list[list[T]]:
    """Contiguous groups of at most group_size; the last group may be smaller."""
    if group_size < 1:
        raise ValueError("group_size must be at least 1")
    return [list(items[i : i + group_size]) for i in range(0, len(items), group_size)]


def join_texts(texts: Sequence[str]) -> str:
    return SEPARATOR.join(texts)


async def hierarchical_reduce(
    items: Sequence[T],
    combine: Combine,
    group_size: int,
    on_round: RoundHook | None = None,
) -> T:
    """
    Reduce `items` to a single value with `combine`.

    Args:
        items: Non-empty sequence of inputs, in order.
        combine: Coroutine function turning a group of items into one item.
        group_size: Max items per combine call. 1 folds the items pairwise, one call
            at a time (valid, but the slowest shape).
        on_round: Optional hook called with (round_number, groups) before each round.

    Returns:
        The output of the final combine call.
    """
    if not items:
        raise ValueError("hierarchical_reduce requires at least one item")
    if group_size < 1:
        raise ValueError("group_size must be at least 1")

    logger.debug(
        f"Starting hierarchical reduce with {len(items)} items, group_size: {group_size}"
    )

    if group_size == 1:
        return await _fold_pairwise(list(items), combine, on_round)

    level: list[T] = list(items)
    round_number = 0
    while True:
        round_number += 1
        if len(level) <= group_size:
            logger.debug(
                f"Final reduction round {round_number}: {len(level)} items fit in one group"
            )
            if on_round is not None:
                on_round(round_number, [level])
            return await combine(level)

        groups = partition(level, group_size)
        logger.debug(
            f"Round {round_number}: {len(groups)} groups, sizes {[len(g) for g in groups]}"
        )
        if on_round is not None:
            on_round(round_number, groups)
        level = await gather_or_cancel(combine(group) for group in groups)


async def _fold_pairwise(
    items: list[T], combine: Combine, on_round: RoundHook | None
) -> T:
    if len(items) == 1:
        if on_round is not None:
            on_round(1, [items])
        return await combine(items)

    acc = items[0]
    for round_number, item in enumerate(items[1:], start=1):
        group = [acc, item]
        if on_round is not None:
            on_round(round_number, [group])
        acc = await combine(group)
    return acc
