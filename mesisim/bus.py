"""The central snooping bus: coherence requests and timed data transfers."""

from __future__ import annotations

from .cache import handle_read_miss, handle_write_miss
from .model import MEMORY_LATENCY, BusData, BusReqType, BusRequest, MESIState, System

# Marker left in ``System.pending`` while a core waits on an upgrade or an eviction writeback.
_PENDING_MARKER = 1


def _cache_to_cache_latency(system: System) -> int:
    return system.config.block_size // 2


def _bus_read(system: System, request: BusRequest, index: int, tag: int) -> None:
    core, address = request.core, request.address
    stats = system.stats
    system.bus_busy = True
    system.total_bus_transactions += 1
    stats[core].misses += 1

    holders = system.holders(index, tag, core)
    if not holders:
        system.caches[core].stall = True
        system.bus_data_queue.append(BusData(address, core, stalls=MEMORY_LATENCY))
        return

    other, line = holders[0]
    latency = _cache_to_cache_latency(system)
    system.caches[core].stall = True
    system.bus_data_queue.append(BusData(address, core, stalls=latency))
    stats[other].data_traffic_bytes += system.caches[other].block_size

    states = system.caches[other].states[index]
    if states[line] is MESIState.M:
        states[line] = MESIState.S
        system.caches[other].stall = True
        system.bus_data_queue.append(
            BusData(address, other, writeback=True, stalls=MEMORY_LATENCY)
        )
        if system.active[other]:
            stats[other].clock_cycles -= latency + MEMORY_LATENCY + 1
            stats[other].idle_cycles += latency + 1
        system.pending[other] = address
    elif states[line] is MESIState.E:
        states[line] = MESIState.S


def _bus_read_exclusive(system: System, request: BusRequest, index: int, tag: int) -> None:
    core, address = request.core, request.address
    stats = system.stats
    system.bus_busy = True
    system.total_bus_transactions += 1
    stats[core].misses += 1

    holders = system.holders(index, tag, core)
    for other, line in holders:
        states = system.caches[other].states[index]
        if states[line] is MESIState.M:
            system.caches[other].stall = True
            system.bus_data_queue.append(
                BusData(address, other, writeback=True, stalls=MEMORY_LATENCY)
            )
            if system.active[other]:
                stats[other].clock_cycles -= MEMORY_LATENCY + 1
            system.pending[other] = address
        states[line] = MESIState.I

    system.caches[core].stall = True
    if holders:
        stats[core].invalidations += 1
    system.bus_data_queue.append(BusData(address, core, write=True, stalls=MEMORY_LATENCY))


def _bus_upgrade(system: System, request: BusRequest, index: int, tag: int) -> None:
    core, address = request.core, request.address
    cache = system.caches[core]
    target = next(
        (
            line
            for line, (line_tag, state) in enumerate(zip(cache.tags[index], cache.states[index]))
            if line_tag == tag and state is MESIState.S
        ),
        None,
    )
    if target is None:
        return

    system.total_bus_transactions += 1
    for other, line in system.holders(index, tag, core):
        system.caches[other].states[index][line] = MESIState.I

    system.stats[core].invalidations += 1
    system.bus_busy = True
    cache.states[index][target] = MESIState.M
    cache.dirty[index][target] = True
    cache.stall = True
    system.bus_data_queue.append(BusData(address, core, inv=True, stalls=0))
    system.pending[core] = _PENDING_MARKER


_HANDLERS = {
    BusReqType.BUS_RD: _bus_read,
    BusReqType.BUS_RDX: _bus_read_exclusive,
    BusReqType.BUS_UPGR: _bus_upgrade,
}


def _complete_transfer(system: System, transfer: BusData) -> None:
    core = transfer.core
    cache = system.caches[core]
    system.total_bus_traffic_bytes += cache.block_size
    system.stats[core].data_traffic_bytes += cache.block_size

    if transfer.writeback:
        system.stats[core].writebacks += 1
        cache.stall = False
        system.pending[core] = None
        return

    index, tag = system.config.split_address(transfer.address)
    eviction_writeback = False
    if transfer.write:
        line, eviction_writeback = handle_write_miss(system, core, index, tag)
        cache.states[index][line] = MESIState.M
    elif not transfer.inv:
        line, eviction_writeback = handle_read_miss(system, core, index, tag)
        shared = bool(system.holders(index, tag, core))
        cache.states[index][line] = MESIState.S if shared else MESIState.E

    cache.stall = False
    system.pending[core] = None
    if eviction_writeback:
        cache.stall = True
        system.pending[core] = _PENDING_MARKER


def bus_cycle(system: System) -> None:
    """Advance the bus by one cycle: arbitrate queued requests, then progress one transfer."""
    system.bus_cycles += 1

    while system.bus_queue:
        request = system.bus_queue.popleft()
        core = request.core
        if system.bus_busy:
            system.caches[core].stall = True
            system.stats[core].idle_cycles += 1
            continue
        system.pending[core] = request.address
        index, tag = system.config.split_address(request.address)
        _HANDLERS[request.type](system, request, index, tag)

    if not system.bus_data_queue:
        return

    transfer = system.bus_data_queue[0]
    if transfer.stalls:
        transfer.stalls -= 1
        return

    _complete_transfer(system, transfer)
    system.bus_data_queue.popleft()
    if not system.bus_data_queue:
        system.bus_busy = False