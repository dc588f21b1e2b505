"""Per-core cache accesses and miss handling."""

from __future__ import annotations

import re

from .model import (
    ADDRESS_MASK,
    MEMORY_LATENCY,
    BusData,
    BusReqType,
    BusRequest,
    MESIState,
    System,
    TraceEntry,
)

_HEX_DIGITS = re.compile(r"\s*([0-9a-fA-F]+)")


def parse_hex_address(address: str) -> int:
    """Parse a hexadecimal address with an optional 0x prefix into a 32-bit value."""
    text = address[2:] if address[:2] in ("0x", "0X") else address
    match = _HEX_DIGITS.match(text)
    if match is None:
        raise ValueError(f"invalid hexadecimal address: {address!r}")
    return int(match.group(1), 16) & ADDRESS_MASK


def _allocate(
    system: System, core: int, index: int, tag: int, *, dirty: bool, stall_on_writeback: bool
) -> tuple[int, bool]:
    cache = system.caches[core]
    line = next(
        (i for i, state in enumerate(system.caches[core].states[index]) if state is MESIState.I),
        None,
    )
    writeback = False
    if line is None:
        line = cache.lru[index].pop(0)
        system.stats[core].evictions += 1
        if cache.dirty[index][line]:
            if stall_on_writeback:
                cache.stall = True
            old_address = system.config.block_address(cache.tags[index][line], index)
            system.bus_data_queue.append(
                BusData(old_address, core, writeback=True, stalls=MEMORY_LATENCY)
            )
            writeback = True
    elif line in cache.lru[index]:
        cache.lru[index].remove(line)

    cache.tags[index][line] = tag
    cache.dirty[index][line] = dirty
    cache.lru[index].append(line)
    return line, writeback


def handle_read_miss(system: System, core: int, index: int, tag: int) -> tuple[int, bool]:
    """Fill a line for a read miss; return ``(line, writeback_queued)``."""
    return _allocate(system, core, index, tag, dirty=False, stall_on_writeback=True)


def handle_write_miss(system: System, core: int, index: int, tag: int) -> tuple[int, bool]:
    """Fill a line for a write miss; return ``(line, writeback_queued)``."""
    return _allocate(system, core, index, tag, dirty=True, stall_on_writeback=False)


def run_access(system: System, entry: TraceEntry, core: int) -> None:
    """Attempt one trace access on ``core``, queueing bus requests on misses."""
    address = parse_hex_address(entry.address)
    if system.pending[core] is not None:
        system.stats[core].clock_cycles += 1
        return

    index, tag = system.config.split_address(address)
    cache = system.caches[core]
    line = cache.find_line(index, tag)

    if entry.op == "R":
        if line is not None:
            cache.touch(index, line)
        else:
            system.bus_queue.append(BusRequest(core, address, BusReqType.BUS_RD))
            cache.stall = True
        return

    if line is None:
        system.bus_queue.append(BusRequest(core, address, BusReqType.BUS_RDX))
        cache.stall = True
        return

    state = cache.states[index][line]
    cache.touch(index, line)
    if state in (MESIState.E, MESIState.M):
        cache.dirty[index][line] = True
        if state is MESIState.E:
            cache.states[index][line] = MESIState.M
    else:
        system.bus_queue.append(BusRequest(core, address, BusReqType.BUS_UPGR))