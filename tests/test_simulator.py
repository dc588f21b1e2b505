import pytest

from mesisim.model import CacheConfig, MESIState, System, TraceEntry
from mesisim.simulator import (
    SimulationResult,
    format_report,
    load_traces,
    main,
    parse_trace,
    simulate,
)


def _write_traces(tmp_path, contents):
    prefix = tmp_path / "app1"
    for core, text in enumerate(contents):
        (tmp_path / f"app1_proc{core}.trace").write_text(text)
    return str(prefix)


def test_parse_trace_skips_blank_comment_and_other_ops():
    lines = ["R 0x817b08\n", "\n", "# comment\n", "X 0x10\n", "W 0x20\n", "R\n"]
    assert parse_trace(lines) == [TraceEntry("R", "0x817b08"), TraceEntry("W", "0x20")]


def test_parse_trace_reads_first_token_after_op():
    assert parse_trace(["  W 0xabc trailing"]) == [TraceEntry("W", "0xabc")]


def test_load_traces_round_trip(tmp_path):
    prefix = _write_traces(tmp_path, ["R 0x0\n", "W 0x10\nR 0x20\n", "", "# only comment\n"])
    traces = load_traces(prefix)
    assert traces == [
        [TraceEntry("R", "0x0")],
        [TraceEntry("W", "0x10"), TraceEntry("R", "0x20")],
        [],
        [],
    ]


def test_load_traces_missing_file(tmp_path):
    (tmp_path / "app1_proc0.trace").write_text("R 0x0\n")
    with pytest.raises(FileNotFoundError):
        load_traces(str(tmp_path / "app1"))


def test_simulate_requires_four_traces():
    with pytest.raises(ValueError):
        simulate(System(), [[]])


def test_simulate_empty_traces():
    system = System()
    result = simulate(system, [[], [], [], []])
    assert result.total_cycles == 0
    assert result.max_time == result.total_cycles + 1
    assert all(stats.instructions == 0 for stats in system.stats)


def test_simulate_single_read_miss():
    system = System()
    result = simulate(system, [[TraceEntry("R", "0x0")], [], [], []])
    stats = system.stats[0]
    assert stats.instructions == 1
    assert stats.reads == 1
    assert stats.writes == 0
    assert stats.misses == 1
    assert system.total_bus_transactions == 1
    assert result.max_time == result.total_cycles + 1
    index, tag = system.config.split_address(0)
    line = system.caches[0].find_line(index, tag)
    assert system.caches[0].states[index][line] is MESIState.E


def test_simulate_shared_reads_end_in_shared_state():
    system = System()
    traces = [[TraceEntry("R", "0x0")], [TraceEntry("R", "0x0")], [], []]
    simulate(system, traces)
    index, tag = system.config.split_address(0)
    for core in (0, 1):
        cache = system.caches[core]
        line = cache.find_line(index, tag)
        assert cache.states[index][line] is MESIState.S
        assert system.stats[core].instructions == 1
    assert system.stats[1].idle_cycles > 0


def test_simulate_write_miss_leaves_modified_dirty_line():
    system = System()
    simulate(system, [[], [], [TraceEntry("W", "0x40")], []])
    index, tag = system.config.split_address(0x40)
    cache = system.caches[2]
    line = cache.find_line(index, tag)
    assert cache.states[index][line] is MESIState.M
    assert cache.dirty[index][line] is True
    assert system.stats[2].writes == 1


def test_format_report_contents():
    system = System(CacheConfig())
    result = simulate(system, [[], [], [], []])
    report = format_report(result, system)
    assert report.startswith("\n===== Simulation Results =====\n")
    assert "Total simulation cycles: 0\n" in report
    assert "MESI Protocol: Enabled\n" in report
    assert "Cache Miss Rate: 0.00000%\n" in report
    assert report.count("Statistics:\n") == 4
    assert report.endswith(f"Maximum Execution Time (cycles): {result.max_time}\n")


def test_format_report_uses_trace_prefix():
    system = System()
    report = format_report(SimulationResult(total_cycles=5, max_time=6, trace_prefix="demo"), system)
    assert "Trace Prefix: demo\n" in report
    assert "Total simulation cycles: 5\n" in report


def test_main_help(capsys):
    assert main(["-h"]) == 0
    assert "Usage:" in capsys.readouterr().out


def test_main_requires_trace_prefix(capsys):
    assert main([]) == 1
    assert "Trace file prefix (-t) is required" in capsys.readouterr().err


def test_main_unknown_option(capsys):
    assert main(["-x"]) == 1
    assert "Unknown option -x" in capsys.readouterr().err


def test_main_missing_argument(capsys):
    assert main(["-s"]) == 1
    assert "Missing argument for -s option" in capsys.readouterr().err


def test_main_missing_trace_file(tmp_path, capsys):
    assert main(["-t", str(tmp_path / "nothing")]) == 1
    assert "Error loading trace files. Exiting." in capsys.readouterr().err


def test_main_writes_output_file(tmp_path, capsys):
    prefix = _write_traces(tmp_path, ["R 0x0\nW 0x0\n", "R 0x100\n", "", ""])
    out = tmp_path / "out.txt"
    assert main(["-t", prefix, "-s", "3", "-E", "4", "-b", "5", "-o", str(out)]) == 0
    assert f"Output file name: {out}" in capsys.readouterr().out
    report = out.read_text()
    assert "Set Index Bits: 3\n" in report
    assert "Associativity: 4\n" in report
    assert "Block Bits: 5\n" in report
    assert "Total Reads: 1\n" in report


def test_main_prints_report_to_stdout(tmp_path, capsys):
    prefix = _write_traces(tmp_path, ["R 0x0\n", "", "", ""])
    assert main(["-t", prefix]) == 0
    out = capsys.readouterr().out
    assert "===== Simulation Results =====" in out
    assert "Overall Bus Summary:" in out