# llc.py
#
# Set-associative last level cache: line store, hit lookup and the MESI
# state transitions applied for processor accesses and injected snoops.
# Replacement is tree pseudo-LRU (see plru.py).

import math
from dataclasses import dataclass
from enum import Enum
from typing import Iterator, List, Optional, Tuple

from plru import PLRUTree, is_power_of_two

# --------- Reference geometry: 16 MiB, 16-way, 64 B lines, 32-bit address ----------
ADDR_BITS = 32
DEFAULT_SIZE_BYTES = 16 * 1024 * 1024
DEFAULT_ASSOC = 16
DEFAULT_BLOCK_BYTES = 64


class MESI(Enum):
    INVALID = "I"
    EXCLUSIVE = "E"
    MODIFIED = "M"
    SHARED = "S"


class Op(Enum):
    READ = "read"
    WRITE = "write"
    SNOOP_READ = "snoop_read"
    SNOOP_WRITE = "snoop_write"
    SNOOP_RWIM = "snoop_rwim"      # read with intent to modify
    SNOOP_UPGRADE = "snoop_upgrade"
    RESET = "reset"
    INSPECT = "inspect"


@dataclass
class CacheLine:
    tag: int = 0
    state: MESI = MESI.INVALID

    @property
    def valid(self) -> bool:
        return self.state != MESI.INVALID


@dataclass
class CacheSet:
    lines: List[CacheLine]


@dataclass
class CacheConfig:
    size_bytes: int = DEFAULT_SIZE_BYTES
    assoc: int = DEFAULT_ASSOC
    block_bytes: int = DEFAULT_BLOCK_BYTES
    addr_bits: int = ADDR_BITS

    def __post_init__(self):
        if min(self.size_bytes, self.assoc, self.block_bytes, self.addr_bits) <= 0:
            raise ValueError("Cache size, associativity, block size and address width must be positive")
        if self.size_bytes % (self.assoc * self.block_bytes) != 0:
            raise ValueError("Cache size must be a multiple of (associativity * block size)")
        if not is_power_of_two(self.assoc):
            raise ValueError(f"Associativity must be a power of 2, got {self.assoc}")
        if not is_power_of_two(self.block_bytes):
            raise ValueError(f"Block size must be a power of 2, got {self.block_bytes}")
        if not is_power_of_two(self.num_sets):
            raise ValueError(f"Number of sets must be a power of 2, got {self.num_sets}")
        if self.idx_bits + self.off_bits > self.addr_bits:
            raise ValueError(
                f"Index and offset need {self.idx_bits + self.off_bits} bits, "
                f"address is only {self.addr_bits} bits wide")

    @property
    def num_sets(self) -> int:
        return self.size_bytes // (self.assoc * self.block_bytes)

    @property
    def idx_bits(self) -> int:
        return int(math.log2(self.num_sets)) if self.num_sets > 1 else 0

    @property
    def off_bits(self) -> int:
        return int(math.log2(self.block_bytes))

    @property
    def tag_bits(self) -> int:
        return self.addr_bits - self.idx_bits - self.off_bits

    def decompose(self, addr: int) -> Tuple[int, int, int]:
        """Split an address into (tag, set index, block offset)."""
        off = addr & ((1 << self.off_bits) - 1)
        idx = (addr >> self.off_bits) & ((1 << self.idx_bits) - 1)
        tag = addr >> (self.off_bits + self.idx_bits)
        return tag, idx, off


@dataclass
class AccessResult:
    """What one operation did to the cache; enough for a trace log line."""
    op: Op
    hit: bool
    idx: int
    way: Optional[int]
    tag: int
    state: MESI
    evicted_tag: Optional[int] = None

    def describe(self) -> str:
        way = "-" if self.way is None else str(self.way)
        outcome = "hit" if self.hit else "miss"
        text = (f"{self.op.value:<13} {outcome:<4} set={self.idx:#06x} way={way:>2} "
                f"tag={self.tag:#05x} state={self.state.value}")
        if self.evicted_tag is not None:
            text += f" evicted={self.evicted_tag:#05x}"
        return text

    __str__ = describe


class LastLevelCache:
    """
    Tag/state only model: no data is stored and evictions never write back.
    A read or write miss always replaces the way chosen by the pseudo-LRU
    tree, even when another way of the set is empty.
    """

    def __init__(self, cfg: CacheConfig):
        self.cfg = cfg
        self.sets = [CacheSet([CacheLine() for _ in range(cfg.assoc)])
                     for _ in range(cfg.num_sets)]
        self.plru = PLRUTree(cfg.num_sets, cfg.assoc)

    def lookup(self, idx: int, tag: int) -> Optional[int]:
        for way, line in enumerate(self.sets[idx].lines):
            if line.state != MESI.INVALID and line.tag == tag:
                return way
        return None

    def _fill(self, op: Op, idx: int, tag: int, state: MESI) -> AccessResult:
        way = self.plru.select_victim(idx)
        victim = self.sets[idx].lines[way]
        evicted = victim.tag if victim.valid else None
        victim.tag = tag
        victim.state = state
        self.plru.record_access(idx, way)
        return AccessResult(op, False, idx, way, tag, state, evicted)

    # ------------- processor side -------------

    def read(self, addr: int) -> AccessResult:
        tag, idx, _ = self.cfg.decompose(addr)
        way = self.lookup(idx, tag)
        if way is None:
            return self._fill(Op.READ, idx, tag, MESI.EXCLUSIVE)

        # state is left as is, whatever it was
        self.plru.record_access(idx, way)
        line = self.sets[idx].lines[way]
        return AccessResult(Op.READ, True, idx, way, tag, line.state)

    def write(self, addr: int) -> AccessResult:
        tag, idx, _ = self.cfg.decompose(addr)
        way = self.lookup(idx, tag)
        if way is None:
            return self._fill(Op.WRITE, idx, tag, MESI.MODIFIED)

        self.plru.record_access(idx, way)
        line = self.sets[idx].lines[way]
        line.state = MESI.MODIFIED
        return AccessResult(Op.WRITE, True, idx, way, tag, line.state)

    # ------------- snoops: never allocate, never touch the tree -------------

    def _snoop(self, op: Op, addr: int, new_state: MESI) -> AccessResult:
        tag, idx, _ = self.cfg.decompose(addr)
        way = self.lookup(idx, tag)
        if way is None:
            return AccessResult(op, False, idx, None, tag, MESI.INVALID)
        line = self.sets[idx].lines[way]
        line.state = new_state
        return AccessResult(op, True, idx, way, tag, line.state)

    def snoop_read(self, addr: int) -> AccessResult:
        # Forced to SHARED from any live state, M and E included.
        return self._snoop(Op.SNOOP_READ, addr, MESI.SHARED)

    def snoop_write(self, addr: int) -> AccessResult:
        return self._snoop(Op.SNOOP_WRITE, addr, MESI.INVALID)

    def snoop_rwim(self, addr: int) -> AccessResult:
        return self._snoop(Op.SNOOP_RWIM, addr, MESI.INVALID)

    def snoop_upgrade(self, addr: int) -> AccessResult:
        return self._snoop(Op.SNOOP_UPGRADE, addr, MESI.INVALID)

    # ------------- whole-cache operations -------------

    def reset(self) -> None:
        for cache_set in self.sets:
            for line in cache_set.lines:
                line.tag = 0
                line.state = MESI.INVALID
        self.plru.reset_all()

    def valid_lines(self) -> Iterator[Tuple[int, int, CacheLine]]:
        """Yield (set, way, line) for every non-INVALID line, in set/way order."""
        for idx, cache_set in enumerate(self.sets):
            for way, line in enumerate(cache_set.lines):
                if line.valid:
                    yield idx, way, line

    def occupancy(self, idx: int) -> int:
        return sum(1 for line in self.sets[idx].lines if line.valid)
