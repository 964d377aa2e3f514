# plru.py
#
# Tree-based pseudo-LRU replacement state for a set-associative cache.
#
# Each set owns (ways - 1) decision bits laid out as an implicit binary tree:
# node i has children 2i+1 (left) and 2i+2 (right), and the leaf for way w
# sits at node w + ways - 1. A 0 bit points left, a 1 bit points right.

from typing import List


def is_power_of_two(n: int) -> bool:
    return n > 0 and (n & (n - 1)) == 0


class PLRUTree:
    """Pseudo-LRU decision bits for every set of one cache."""

    def __init__(self, num_sets: int, ways: int):
        if not is_power_of_two(ways):
            raise ValueError(f"Associativity must be a power of 2, got {ways}")
        self.num_sets = num_sets
        self.ways = ways
        self.bits: List[List[int]] = [[0] * (ways - 1) for _ in range(num_sets)]

    def select_victim(self, idx: int) -> int:
        """Follow the bits from the root down to a leaf. Does not mutate."""
        bits = self.bits[idx]
        node = 0
        while node < self.ways - 1:
            node = 2 * node + 1 if bits[node] == 0 else 2 * node + 2
        return node - (self.ways - 1)

    def record_access(self, idx: int, way: int) -> None:
        """
        Walk from the leaf of `way` up to the root, pointing every ancestor
        away from the subtree that was just touched.
        """
        if not 0 <= way < self.ways:
            raise IndexError(f"way {way} out of range for {self.ways}-way set")
        bits = self.bits[idx]
        node = way + self.ways - 1
        while node > 0:
            parent = (node - 1) // 2
            # odd nodes are left children
            bits[parent] = 1 if node % 2 == 1 else 0
            node = parent

    def reset(self, idx: int) -> None:
        bits = self.bits[idx]
        for i in range(len(bits)):
            bits[i] = 0

    def reset_all(self) -> None:
        for idx in range(self.num_sets):
            self.reset(idx)
