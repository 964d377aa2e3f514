#!/usr/bin/env python3
# coherence.py
#
# Usage:
#   python coherence.py quiet trace.txt
#   python coherence.py verbose trace.txt --cache-size 1024 --assoc 2 --block-size 64
#
# Replays a trace of '<op> <hex address>' records against a single MESI
# last level cache with tree pseudo-LRU replacement and prints hit/miss stats.

import argparse
import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Tuple

from llc import (ADDR_BITS, DEFAULT_ASSOC, DEFAULT_BLOCK_BYTES, DEFAULT_SIZE_BYTES,
                 AccessResult, CacheConfig, LastLevelCache, Op)

logger = logging.getLogger(__name__)

DEC_DIGITS = frozenset("0123456789")
HEX_DIGITS = frozenset("0123456789abcdefABCDEF")

# --------- Operation codes in the trace ----------
READ_DATA = 0
WRITE_DATA = 1
READ_INSTR = 2
SNOOP_READ = 3
SNOOP_WRITE = 4
SNOOP_RWIM = 5
SNOOP_UPGRADE = 6
RESET = 8
INSPECT = 9

OPCODES = {
    READ_DATA: Op.READ,
    WRITE_DATA: Op.WRITE,
    READ_INSTR: Op.READ,
    SNOOP_READ: Op.SNOOP_READ,
    SNOOP_WRITE: Op.SNOOP_WRITE,
    SNOOP_RWIM: Op.SNOOP_RWIM,
    SNOOP_UPGRADE: Op.SNOOP_UPGRADE,
    RESET: Op.RESET,
    INSPECT: Op.INSPECT,
}


@dataclass
class CacheStats:
    accesses: int = 0      # reads + writes only
    reads: int = 0
    writes: int = 0
    hits: int = 0          # every lookup, snoops included
    misses: int = 0
    read_hits: int = 0
    read_misses: int = 0
    write_hits: int = 0
    write_misses: int = 0
    snoop_hits: int = 0
    snoop_misses: int = 0
    evictions: int = 0     # live lines overwritten by a fill

    @property
    def lookups(self) -> int:
        return self.hits + self.misses

    @property
    def hit_ratio(self) -> Optional[float]:
        if self.accesses == 0:
            return None
        return self.hits / self.lookups

    @property
    def miss_ratio(self) -> Optional[float]:
        if self.accesses == 0:
            return None
        return self.misses / self.lookups


class TraceReader:
    """
    Reads a trace file: lines 'Op Address', op in decimal, address in hex.
    Malformed lines are skipped. Each iteration reopens the file.
    """

    def __init__(self, path: Path, addr_bits: int = ADDR_BITS):
        self.path = Path(path)
        self.max_addr = (1 << addr_bits) - 1

    def parse(self, line: str) -> Optional[Tuple[int, int]]:
        parts = line.split()
        if len(parts) != 2:
            return None
        a, b = parts
        if b[:2] in ("0x", "0X"):
            b = b[2:]
        # int() alone would take signs, underscores and non-ASCII digits
        if not a or not set(a) <= DEC_DIGITS or not b or not set(b) <= HEX_DIGITS:
            return None
        label = int(a)
        addr = int(b, 16)
        if not 0 <= addr <= self.max_addr:
            return None
        return label, addr

    def __iter__(self) -> Iterator[Tuple[int, int]]:
        with self.path.open('r', encoding='ascii', errors='replace') as f:
            for lineno, line in enumerate(f, 1):
                line = line.strip()
                if not line or line.startswith('#'):
                    continue
                record = self.parse(line)
                if record is None:
                    logger.debug("%s:%d: skipping malformed record %r", self.path, lineno, line)
                    continue
                yield record


class Simulator:
    """Owns the cache and the counters; applies records strictly in order."""

    def __init__(self, cfg: CacheConfig, verbose: bool = False):
        self.cfg = cfg
        self.verbose = verbose
        self.llc = LastLevelCache(cfg)
        self.stats = CacheStats()

    def process(self, label: int, addr: int) -> Optional[AccessResult]:
        op = OPCODES.get(label)
        if op is None:
            logger.info("ignoring unrecognized op %d (%#010x)", label, addr)
            return None

        if op == Op.RESET:
            logger.info("reset: all lines invalidated")
            self.llc.reset()
            return None
        if op == Op.INSPECT:
            # Only dumps in quiet mode.
            if not self.verbose:
                self.inspect()
            return None

        if op == Op.READ:
            result = self.llc.read(addr)
        elif op == Op.WRITE:
            result = self.llc.write(addr)
        elif op == Op.SNOOP_READ:
            result = self.llc.snoop_read(addr)
        elif op == Op.SNOOP_WRITE:
            result = self.llc.snoop_write(addr)
        elif op == Op.SNOOP_RWIM:
            result = self.llc.snoop_rwim(addr)
        else:
            result = self.llc.snoop_upgrade(addr)

        self._count(result)
        logger.info("%#010x %s", addr, result)
        return result

    def _count(self, result: AccessResult) -> None:
        st = self.stats
        if result.hit:
            st.hits += 1
        else:
            st.misses += 1
        if result.evicted_tag is not None:
            st.evictions += 1

        if result.op == Op.READ:
            st.accesses += 1
            st.reads += 1
            if result.hit:
                st.read_hits += 1
            else:
                st.read_misses += 1
        elif result.op == Op.WRITE:
            st.accesses += 1
            st.writes += 1
            if result.hit:
                st.write_hits += 1
            else:
                st.write_misses += 1
        elif result.hit:
            st.snoop_hits += 1
        else:
            st.snoop_misses += 1

    def run(self, records: Iterable[Tuple[int, int]]) -> None:
        for label, addr in records:
            self.process(label, addr)

    def dump_lines(self) -> List[str]:
        return [f"set={idx:#06x} way={way:>2} tag={line.tag:#05x} state={line.state.value}"
                for idx, way, line in self.llc.valid_lines()]

    def inspect(self) -> None:
        lines = self.dump_lines()
        print(f"---- cache contents ({len(lines)} valid lines) ----")
        for text in lines:
            print(text)
        print("----")

    def print_results(self) -> None:
        cfg, st = self.cfg, self.stats
        print("==== RESULTS ====")
        print(f"cache_size_bytes={cfg.size_bytes} assoc={cfg.assoc} block_bytes={cfg.block_bytes}")
        print(f"sets={cfg.num_sets} tag_bits={cfg.tag_bits} idx_bits={cfg.idx_bits} off_bits={cfg.off_bits}")
        print(f"accesses={st.accesses}")
        print(f"reads={st.reads} writes={st.writes}")
        print(f"hits={st.hits} misses={st.misses}")
        print(f"read_hits={st.read_hits} read_misses={st.read_misses}")
        print(f"write_hits={st.write_hits} write_misses={st.write_misses}")
        print(f"snoop_hits={st.snoop_hits} snoop_misses={st.snoop_misses}")
        print(f"evictions={st.evictions}")
        if st.hit_ratio is not None:
            print(f"hit_ratio={st.hit_ratio:.4f} miss_ratio={st.miss_ratio:.4f}")


def main(argv: Optional[List[str]] = None) -> None:
    ap = argparse.ArgumentParser(
        description="Trace-driven LLC simulator (MESI, tree pseudo-LRU)")
    ap.add_argument("mode", choices=["quiet", "verbose"],
                    help="verbose logs every record; quiet only prints inspect dumps and results")
    ap.add_argument("trace", type=Path, help="Trace file with '<op> <hex address>' lines")
    ap.add_argument("--cache-size", type=int, default=DEFAULT_SIZE_BYTES,
                    help="LLC size in bytes (default: 16 MiB)")
    ap.add_argument("--assoc", type=int, default=DEFAULT_ASSOC,
                    help="LLC associativity (default: 16)")
    ap.add_argument("--block-size", type=int, default=DEFAULT_BLOCK_BYTES,
                    help="LLC block size in bytes (default: 64)")
    ap.add_argument("--addr-bits", type=int, default=ADDR_BITS,
                    help="Address width in bits (default: 32)")
    args = ap.parse_args(argv)

    verbose = args.mode == "verbose"
    logging.basicConfig(level=logging.INFO if verbose else logging.WARNING,
                        format='%(levelname)s: %(message)s')

    try:
        cfg = CacheConfig(size_bytes=args.cache_size, assoc=args.assoc,
                          block_bytes=args.block_size, addr_bits=args.addr_bits)
    except ValueError as e:
        logging.error(f"Invalid cache configuration: {e}")
        sys.exit(1)

    if not args.trace.is_file():
        logging.error(f"Trace file {args.trace} not found.")
        sys.exit(1)

    sim = Simulator(cfg, verbose=verbose)
    try:
        sim.run(TraceReader(args.trace, cfg.addr_bits))
    except OSError as e:
        logging.error(f"Cannot read trace file {args.trace}: {e}")
        sys.exit(1)

    sim.print_results()


if __name__ == "__main__":
    main()
