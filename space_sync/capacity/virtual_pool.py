"""
Virtual Pool — holding identifiers for entities without a physical space.

Pool ids let the remote service address an entity before it is bound to a
label. Freed numbers are reused, lowest first.
"""

import logging
from typing import Iterable, List, Optional, Set

from pydantic import BaseModel

logger = logging.getLogger(__name__)


class VirtualPoolConfig(BaseModel):
    prefix: str = "POOL-"
    start_index: int = 1
    max_pool_size: int = 9999
    width: int = 4


DEFAULT_POOL_CONFIG = VirtualPoolConfig()


def is_pool_id(article_id: Optional[str], config: VirtualPoolConfig = DEFAULT_POOL_CONFIG) -> bool:
    return bool(article_id) and article_id.startswith(config.prefix)


def extract_pool_number(
    pool_id: str, config: VirtualPoolConfig = DEFAULT_POOL_CONFIG
) -> Optional[int]:
    """Numeric part of a pool id, or None if it is not one."""
    if not is_pool_id(pool_id, config):
        return None
    try:
        return int(pool_id[len(config.prefix):])
    except ValueError:
        return None


def format_pool_id(number: int, config: VirtualPoolConfig = DEFAULT_POOL_CONFIG) -> str:
    return f"{config.prefix}{number:0{config.width}d}"


def next_pool_id(
    existing: Iterable[str], config: VirtualPoolConfig = DEFAULT_POOL_CONFIG
) -> str:
    """Lowest unused pool id."""
    used = {
        n for n in (extract_pool_number(i, config) for i in existing) if n is not None
    }
    for number in range(config.start_index, config.max_pool_size + 1):
        if number not in used:
            return format_pool_id(number, config)
    raise ValueError(f"Virtual pool exhausted ({config.max_pool_size} ids in use)")


def generate_pool_ids(
    count: int,
    existing: Iterable[str],
    preferred: Optional[Iterable[str]] = None,
    config: VirtualPoolConfig = DEFAULT_POOL_CONFIG,
) -> List[str]:
    """
    Allocate `count` pool ids.

    Preferred ids (e.g. empty pool articles already present remotely) are
    used first, lowest number first; the rest are fresh.
    """
    taken: Set[str] = set(existing)
    generated: List[str] = []

    reusable = sorted(
        (p for p in (preferred or []) if p not in taken and is_pool_id(p, config)),
        key=lambda p: extract_pool_number(p, config) or 0,
    )
    for pool_id in reusable[:count]:
        generated.append(pool_id)
        taken.add(pool_id)

    reused = len(generated)
    while len(generated) < count:
        pool_id = next_pool_id(taken, config)
        generated.append(pool_id)
        taken.add(pool_id)

    logger.debug(
        "Generated pool ids count=%d reused=%d fresh=%d",
        len(generated), reused, len(generated) - reused,
    )
    return generated
