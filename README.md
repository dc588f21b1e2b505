# mesisim

A cycle-stepped simulator of a four-core system in which every core has a
private L1 cache. The caches stay coherent through the MESI protocol over a
central snooping bus. Caches are write-back and write-allocate and use LRU
replacement. Memory transfers take 100 bus cycles; a block supplied by
another cache takes half the block size in bytes.

## Installing

```
pip install .
```

For the tests:

```
pip install .[test]
pytest
```

## Traces

A run reads four trace files, one per core, named from a common prefix:

```
app1_proc0.trace
app1_proc1.trace
app1_proc2.trace
app1_proc3.trace
```

Each line holds an operation (`R` or `W`) and a hexadecimal address, with or
without a `0x` prefix:

```
R 0x817b08
W 0x817b0c
```

Empty lines and lines that start with `#` are skipped, as are operations
other than `R` and `W`. Addresses are taken as 32-bit values.

## Running

```
mesisim -t app1 -s 6 -E 2 -b 5
```

Options:

- `-t <prefix>`: name of the application whose four traces are used (required)
- `-s <s>`: number of set index bits (2^s sets); default 2, must be at least 0
- `-E <E>`: associativity (lines per set); default 2, must be at least 1
- `-b <b>`: number of block bits (2^b-byte blocks); default 4, must be at least 1
- `-o <file>`: write the report to this file instead of standard output
  (the chosen file name is printed first)
- `-h`: print help

The command exits with status 0 on success and 1 on a bad option, a missing
argument, or a trace or output file that cannot be opened.

The report gives total simulation cycles, the instructions each core
executed, the cache parameters, and for each core its reads, writes,
execution and idle cycles, misses and miss rate, evictions, writebacks, bus
invalidations and data traffic, followed by a bus summary with total bus
transactions, total bus traffic and the maximum execution time. The "Trace
Prefix" line of the report always reads `app`.

## Using it from Python

```python
from mesisim.model import CacheConfig, System
from mesisim.simulator import format_report, parse_trace, simulate

config = CacheConfig(set_bits=2, block_bits=4, associativity=2)
system = System(config)
traces = [
    parse_trace(["R 0x0", "W 0x1000"]),
    parse_trace(["R 0x0"]),
    [],
    [],
]
result = simulate(system, traces)
print(format_report(result, system))
```

- `mesisim.simulator.load_traces(prefix)` reads the four trace files from
  disk; `parse_trace(lines)` turns trace lines into `TraceEntry` objects.
- `simulate(system, traces)` takes exactly four traces (otherwise it raises
  `ValueError`) and returns a `SimulationResult` with `total_cycles` and
  `max_time`; per-core counters are left in `system.stats` as `CoreStats`.
- `mesisim.model` holds `CacheConfig`, `Cache`, `System`, `MESIState`,
  `BusReqType`, `BusRequest` and `BusData`.
- `mesisim.cache.run_access` and `mesisim.bus.bus_cycle` perform one core
  access and one bus cycle, for stepping a `System` by hand.

A `System` is used for one run only; create a new one for each simulation.