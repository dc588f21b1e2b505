"""Data model for the multicore MESI cache simulator."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from enum import Enum

NUM_CORES = 4
MEMORY_LATENCY = 100
ADDRESS_MASK = 0xFFFFFFFF


class MESIState(Enum):
    """Coherence state of a cache line."""

    M = "M"
    E = "E"
    S = "S"
    I = "I"  # noqa: E741


class BusReqType(Enum):
    """Kinds of coherence requests placed on the bus."""

    BUS_RD = "BusRd"
    BUS_RDX = "BusRdX"
    BUS_UPGR = "BusUpgr"


@dataclass(frozen=True)
class BusRequest:
    """A coherence request issued by a core."""

    core: int
    address: int
    type: BusReqType


@dataclass
class BusData:
    """A pending data transfer on the bus; ``stalls`` counts down to completion."""

    address: int
    core: int
    write: bool = False
    writeback: bool = False
    inv: bool = False
    stalls: int = 0


@dataclass(frozen=True)
class TraceEntry:
    """One memory access from a trace: ``op`` is 'R' or 'W'."""

    op: str
    address: str


@dataclass(frozen=True)
class CacheConfig:
    """Cache geometry: 2**set_bits sets of ``associativity`` lines of 2**block_bits bytes."""

    set_bits: int = 2
    block_bits: int = 4
    associativity: int = 2

    @property
    def num_sets(self) -> int:
        return 1 << self.set_bits

    @property
    def block_size(self) -> int:
        return 1 << self.block_bits

    @property
    def size_kb(self) -> float:
        return self.num_sets * self.associativity * self.block_size / 1024.0

    def split_address(self, address: int) -> tuple[int, int]:
        """Return the ``(index, tag)`` of an address."""
        index = (address >> self.block_bits) & (self.num_sets - 1)
        tag = address >> (self.set_bits + self.block_bits)
        return index, tag

    def block_address(self, tag: int, index: int) -> int:
        """Rebuild the block-aligned address of a line from its tag and index."""
        address = (tag << (self.set_bits + self.block_bits)) | (index << self.block_bits)
        return address & ADDRESS_MASK


class Cache:
    """Per-core private cache: tags, dirty bits, MESI states and LRU order per set."""

    def __init__(self, config: CacheConfig) -> None:
        self.config = config
        sets, ways = config.num_sets, config.associativity
        self.tags: list[list[int]] = [[0] * ways for _ in range(sets)]
        self.dirty: list[list[bool]] = [[False] * ways for _ in range(sets)]
        self.states: list[list[MESIState]] = [[MESIState.I] * ways for _ in range(sets)]
        # Least recently used line first, most recently used last.
        self.lru: list[list[int]] = [list(range(ways)) for _ in range(sets)]
        self.stall = False

    @property
    def block_size(self) -> int:
        return self.config.block_size

    def touch(self, index: int, line: int) -> None:
        """Mark ``line`` of set ``index`` as most recently used."""
        order = self.lru[index]
        if line in order:
            order.remove(line)
        order.append(line)

    def find_line(self, index: int, tag: int) -> int | None:
        """Return the valid line in set ``index`` holding ``tag``, or None."""
        return next(
            (
                line
                for line, (line_tag, state) in enumerate(zip(self.tags[index], self.states[index]))
                if state is not MESIState.I and line_tag == tag
            ),
            None,
        )


@dataclass
class CoreStats:
    """Counters gathered for one core."""

    reads: int = 0
    writes: int = 0
    misses: int = 0
    evictions: int = 0
    writebacks: int = 0
    invalidations: int = 0
    data_traffic_bytes: int = 0
    idle_cycles: int = 0
    instructions: int = 0
    clock_cycles: int = 0


class System:
    """The whole simulated machine: four caches, the bus and the statistics."""

    def __init__(self, config: CacheConfig | None = None) -> None:
        self.config = config or CacheConfig()
        self.caches = [Cache(self.config) for _ in range(NUM_CORES)]
        self.stats = [CoreStats() for _ in range(NUM_CORES)]
        self.bus_queue: deque[BusRequest] = deque()
        self.bus_data_queue: deque[BusData] = deque()
        self.pending: list[int | None] = [None] * NUM_CORES
        self.active = [True] * NUM_CORES
        self.bus_busy = False
        self.bus_cycles = 0
        self.total_bus_transactions = 0
        self.total_bus_traffic_bytes = 0

    def holders(self, index: int, tag: int, exclude: int) -> list[tuple[int, int]]:
        """List ``(core, line)`` pairs of other cores holding a valid copy of the block."""
        return [
            (core, line)
            for core, cache in enumerate(self.caches)
            if core != exclude
            for line, (line_tag, state) in enumerate(zip(cache.tags[index], cache.states[index]))
            if line_tag == tag and state is not MESIState.I
        ]