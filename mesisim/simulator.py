"""Trace loading, the multicore simulation loop, reporting and the command line."""

from __future__ import annotations

import re
import sys
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from pathlib import Path

from .bus import bus_cycle
from .cache import run_access
from .model import NUM_CORES, CacheConfig, System, TraceEntry

_PROG = "mesisim"
_LEADING_INT = re.compile(r"\s*([+-]?\d+)")


@dataclass(frozen=True)
class SimulationResult:
    """Timing results of one simulation run."""

    total_cycles: int
    max_time: int
    trace_prefix: str = "app"


def parse_trace(lines: Iterable[str]) -> list[TraceEntry]:
    """Parse trace lines such as ``R 0x817b08``, skipping blanks, comments and other ops."""
    entries = []
    for raw in lines:
        line = raw.rstrip("\n")
        if not line or line.startswith("#"):
            continue
        stripped = line.lstrip()
        if not stripped:
            continue
        op, rest = stripped[0], stripped[1:].split()
        if not rest:
            continue
        if op in ("R", "W"):
            entries.append(TraceEntry(op, rest[0]))
    return entries


def load_traces(prefix: str) -> list[list[TraceEntry]]:
    """Load ``<prefix>_proc0.trace`` .. ``<prefix>_proc3.trace``, one trace per core."""
    traces = []
    for core in range(NUM_CORES):
        path = Path(f"{prefix}_proc{core}.trace")
        with path.open() as handle:
            traces.append(parse_trace(handle))
    return traces


def simulate(system: System, traces: Sequence[Sequence[TraceEntry]]) -> SimulationResult:
    """Run all cores in lock step with the bus until every trace has completed."""
    if len(traces) != NUM_CORES:
        raise ValueError(f"expected {NUM_CORES} traces, got {len(traces)}")

    positions = [0] * NUM_CORES
    global_cycle = 0
    max_time = 0
    running = True

    while running:
        for core, trace in enumerate(traces):
            if not system.active[core]:
                continue
            if positions[core] < len(trace):
                run_access(system, trace[positions[core]], core)
            else:
                system.active[core] = False

        bus_cycle(system)

        for core, trace in enumerate(traces):
            if not system.caches[core].stall and system.active[core]:
                positions[core] += 1
                system.stats[core].instructions += 1
                if positions[core] == len(trace):
                    system.active[core] = False

        running = any(
            system.active[core] or system.caches[core].stall or system.bus_data_queue
            for core in range(NUM_CORES)
        )
        global_cycle += 1
        max_time = max(max_time, global_cycle)

    for stats, trace in zip(system.stats, traces):
        stats.reads += sum(1 for entry in trace if entry.op == "R")
        stats.writes += sum(1 for entry in trace if entry.op == "W")

    return SimulationResult(total_cycles=global_cycle - 1, max_time=max_time)


def format_report(result: SimulationResult, system: System) -> str:
    """Render the final statistics report."""
    config = system.config
    lines = ["", "===== Simulation Results =====", f"Total simulation cycles: {result.total_cycles}"]
    for core, stats in enumerate(system.stats):
        lines += [f"Core {core}:", f"  Instructions executed: {stats.instructions}", ""]

    lines += [
        "Simulation Parameters:",
        f"Trace Prefix: {result.trace_prefix}",
        f"Set Index Bits: {config.set_bits}",
        f"Associativity: {config.associativity}",
        f"Block Bits: {config.block_bits}",
        f"Block Size (Bytes): {config.block_size}",
        f"Number of Sets: {config.num_sets}",
        f"Cache Size (KB per core): {config.size_kb:.2f}",
        "MESI Protocol: Enabled",
        "Write Policy: Write-back, Write-allocate",
        "Replacement Policy: LRU",
        "Bus: Central snooping bus",
        "",
    ]

    for core, stats in enumerate(system.stats):
        accesses = stats.reads + stats.writes
        miss_rate = stats.misses * 100.0 / accesses if accesses > 0 else 0.0
        lines += [
            f"Core {core} Statistics:",
            f"Total Instructions: {stats.instructions}",
            f"Total Reads: {stats.reads}",
            f"Total Writes: {stats.writes}",
            f"Total Execution Cycles: {stats.clock_cycles + stats.instructions}",
            f"Idle Cycles: {stats.idle_cycles}",
            f"Cache Misses: {stats.misses}",
            f"Cache Miss Rate: {miss_rate:.5f}%",
            f"Cache Evictions: {stats.evictions}",
            f"Writebacks: {stats.writebacks}",
            f"Bus Invalidations: {stats.invalidations}",
            f"Data Traffic (Bytes): {stats.data_traffic_bytes}",
            "",
        ]

    lines += [
        "Overall Bus Summary:",
        f"Total Bus Transactions: {system.total_bus_transactions}",
        f"Total Bus Traffic (Bytes): {system.total_bus_traffic_bytes}",
        f"Maximum Execution Time (cycles): {result.max_time}",
    ]
    return "\n".join(lines) + "\n"


def _usage(prog: str) -> str:
    return (
        f"Usage: {prog} -t <tracefile> -s <s> -E <E> -b <b> [-o <outfilename>] [-h]\n"
        "\nOptions:\n"
        "  -t <tracefile>  Name of the parallel application (e.g. app1) whose 4 traces are\n"
        "                  to be used in simulation.\n"
        "  -s <s>          Number of set index bits (number of sets in the cache = S = 2^s).\n"
        "  -E <E>          Associativity (number of cache lines per set).\n"
        "  -b <b>          Number of block bits (block size = B = 2^b).\n"
        "  -o <outfilename>Log output in file for plotting etc.\n"
        "  -h              Print this help message.\n"
    )


def _atoi(text: str) -> int:
    match = _LEADING_INT.match(text)
    return int(match.group(1)) if match else 0


def main(argv: Sequence[str] | None = None) -> int:
    """Command-line entry point; returns the process exit status."""
    args = list(sys.argv[1:] if argv is None else argv)
    trace_prefix = ""
    out_filename = ""
    numbers = {"-s": 2, "-E": 2, "-b": 4}

    remaining = iter(args)
    for option in remaining:
        if option == "-h":
            sys.stdout.write(_usage(_PROG))
            return 0
        if option not in ("-t", "-s", "-E", "-b", "-o"):
            print(f"Error: Unknown option {option}.", file=sys.stderr)
            return 1
        value = next(remaining, None)
        if value is None:
            print(f"Error: Missing argument for {option} option.", file=sys.stderr)
            return 1
        if option == "-t":
            trace_prefix = value
        elif option == "-o":
            out_filename = value
            print(f"Output file name: {value}")
        else:
            numbers[option] = _atoi(value)

    if not trace_prefix:
        print("Error: Trace file prefix (-t) is required.", file=sys.stderr)
        sys.stderr.write(_usage(_PROG))
        return 1

    if numbers["-s"] < 0 or numbers["-b"] < 1 or numbers["-E"] < 1:
        print("Error: -s must be >= 0, -b >= 1 and -E >= 1.", file=sys.stderr)
        return 1

    try:
        traces = load_traces(trace_prefix)
    except OSError as exc:
        print(f"Error: Could not open trace file {exc.filename}", file=sys.stderr)
        print("Error loading trace files. Exiting.", file=sys.stderr)
        return 1

    config = CacheConfig(set_bits=numbers["-s"], block_bits=numbers["-b"], associativity=numbers["-E"])
    system = System(config)

    if out_filename:
        try:
            out_file = open(out_filename, "w")
        except OSError:
            print(f"Error: Could not open output file {out_filename}", file=sys.stderr)
            return 1
        with out_file:
            result = simulate(system, traces)
            out_file.write(format_report(result, system))
    else:
        result = simulate(system, traces)
        sys.stdout.write(format_report(result, system))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())