import json

from layout_cli import main

LAYOUT_CONFIG = {
    "ram": {"main": {"origin": "0x20000000", "size": "20K"}},
    "data": {"ram": "main"},
    "stack": {"main": {"ram": "main", "size": "4K"}},
    "heap": {"main": {"ram": "main", "size": "100%", "pools": [{"block": "4", "count": "100%"}]}},
}


def test_calculate_writes_outputs(tmp_path, capsys):
    config = tmp_path / "layout.json"
    config.write_text(json.dumps(LAYOUT_CONFIG))
    ld = tmp_path / "memory.ld"
    header = tmp_path / "memory_layout.h"
    output = tmp_path / "calculated.json"

    code = main(["calculate", str(config), "--data-size", "1K",
                 "--ld", str(ld), "--header", str(header), "--output", str(output)])
    assert code == 0
    assert "MEMORY LAYOUT" in capsys.readouterr().out

    assert "RAM_MAIN (wx)" in ld.read_text()
    assert "#define HEAP_MAIN_POOL_COUNT 1" in header.read_text()
    calculated = json.loads(output.read_text())
    assert calculated["data"]["size"] == "1K"
    assert calculated["data"]["origin"] == "0x20001000"


def test_calculate_reports_layout_errors(tmp_path, capsys):
    config = dict(LAYOUT_CONFIG, stack={"main": {"ram": "ccm", "size": "4K"}})
    path = tmp_path / "layout.json"
    path.write_text(json.dumps(config))

    assert main(["calculate", str(path)]) == 1
    assert "error: stack.main.ram points to an unknown RAM region ccm" in capsys.readouterr().err


def test_calculate_missing_file(tmp_path, capsys):
    assert main(["calculate", str(tmp_path / "missing.json")]) == 1
    assert capsys.readouterr().err.startswith("error:")


def test_heap_generate_from_trace(tmp_path, capsys):
    trace = tmp_path / "trace.json"
    trace.write_text(json.dumps(
        [{"type": "alloc", "size": size} for size in [4] * 10 + [8] * 5 + [12] * 2 + [64]]
    ))

    assert main(["heap", str(trace), "--size", "1K", "--pools", "2", "--generate"]) == 0
    out = capsys.readouterr().out
    assert "HEAP USAGE" in out
    assert "OPTIMIZED LAYOUT" in out
    assert "# fragmentation: 100 / 9.77%" in out
    assert '"block": "12"' in out
    assert '"block": "64"' in out


def test_heap_generate_without_trace(tmp_path, capsys):
    assert main(["heap", str(tmp_path / "missing.json"), "--size", "4K", "--generate"]) == 0
    captured = capsys.readouterr()
    assert "not exists" in captured.err
    generated = json.loads(captured.out)
    assert generated["size"] == "4K"
    assert 1 <= len(generated["pools"]) <= 8
    assert generated["pools"][0]["block"] == "4"


def test_heap_rejects_corrupted_trace(tmp_path, capsys):
    trace = tmp_path / "trace.json"
    trace.write_text(json.dumps([{"type": "dealloc", "size": 4}]))
    assert main(["heap", str(trace), "--size", "1K"]) == 1
    assert "trace is corrupted" in capsys.readouterr().err
