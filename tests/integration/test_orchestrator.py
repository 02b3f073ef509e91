"""End-to-end batch runs against a fake disassembly backend."""

import json

import pytest

from binfeat.errors import EngineTimeout, FatalPipelineError, NamingCollision, RuleLoadError
from binfeat.labeling.rules import LabelRuleSet, SignatureRule
from binfeat.pipeline.orchestrator import RUN_SUMMARY_FILE, BatchOrchestrator, discover_binaries


@pytest.fixture
def bins(tmp_path):
    path = tmp_path / "bins"
    path.mkdir()
    return path


@pytest.fixture
def out(tmp_path):
    return tmp_path / "out"


def write_bins(directory, *names):
    for i, name in enumerate(names):
        (directory / name).write_bytes(bytes([i]) * 32)


def orchestrator(config, backend, signatures, label_rules):
    return BatchOrchestrator(config, backend=backend, signatures=signatures, rules=label_rules, show_progress=False)


def load(out, name):
    return json.loads((out / f"{name}_features.json").read_text())


def test_discover_binaries(bins):
    write_bins(bins, "z.elf", "a.o", "lib.a", "fw.BIN", "notes.txt")
    (bins / "sub.elf").mkdir()
    found = discover_binaries(bins, [".elf", ".o", ".a", ".bin"])
    assert [p.name for p in found] == ["a.o", "fw.BIN", "lib.a", "z.elf"]


def test_discover_missing_directory(tmp_path):
    with pytest.raises(FatalPipelineError):
        discover_binaries(tmp_path / "nope", [".elf"])


def test_aes_and_unknown_functions(
    sample_config, bins, out, fake_backend_factory, signatures, label_rules, aes_raw_function, plain_raw_function
):
    write_bins(bins, "a.elf", "b.o")
    backend = fake_backend_factory(
        {"a.elf": {"functions": [aes_raw_function]}, "b.o": {"functions": [plain_raw_function]}}
    )
    summary = orchestrator(sample_config, backend, signatures, label_rules).run(bins, out)

    assert summary.succeeded_binaries == 2
    assert summary.processed_functions == 2

    aes = load(out, "a.elf")["functions"][0]
    assert aes["name"] == "AES_Encrypt"
    assert aes["address"] == "00100000"
    assert aes["crypto_signatures"]["has_aes_sbox"] == 1
    assert aes["label"] == "AES-128"
    assert aes["label_source"].startswith("name:")

    plain = load(out, "b.o")["functions"][0]
    assert plain["name"] == "sub_401000"
    assert plain["label"] == "Unknown"


def test_engine_crash_fails_only_that_binary(
    sample_config, bins, out, fake_backend_factory, signatures, label_rules, plain_raw_function
):
    names = ["one.elf", "two.elf", "three.elf"]
    write_bins(bins, *names)
    backend = fake_backend_factory({n: {"functions": [plain_raw_function]} for n in names}, crash={"two.elf"})

    summary = orchestrator(sample_config, backend, signatures, label_rules).run(bins, out)

    assert (out / "one.elf_features.json").is_file()
    assert (out / "three.elf_features.json").is_file()
    assert not (out / "two.elf_features.json").exists()
    assert summary.total_binaries == 3
    assert summary.failed_binaries == 1
    assert summary.succeeded_binaries == 2

    written = json.loads((out / RUN_SUMMARY_FILE).read_text())
    assert written["failed_binaries"] == 1
    assert written["failures"] == [
        {"binary": "two.elf", "error": "EngineCrash", "message": "analyzeHeadless exited with status 1"}
    ]
    assert not [p for p in out.iterdir() if p.name.endswith(".tmp")]


def test_engine_timeout_fails_only_that_binary(
    sample_config, bins, out, fake_backend_factory, signatures, label_rules, plain_raw_function
):
    class SlowBackend(fake_backend_factory):
        def disassemble(self, binary_path):
            if binary_path.name == "slow.elf":
                raise EngineTimeout("analysis exceeded 5s", binary=binary_path.name)
            return super().disassemble(binary_path)

    names = ["fast.elf", "slow.elf"]
    write_bins(bins, *names)
    backend = SlowBackend({n: {"functions": [plain_raw_function]} for n in names})

    summary = orchestrator(sample_config, backend, signatures, label_rules).run(bins, out)

    assert summary.succeeded_binaries == 1
    assert summary.failed_binaries == 1
    assert (out / "fast.elf_features.json").is_file()
    written = json.loads((out / RUN_SUMMARY_FILE).read_text())
    assert written["failures"] == [
        {"binary": "slow.elf", "error": "EngineTimeout", "message": "analysis exceeded 5s"}
    ]


def test_malformed_export_shape_does_not_abort_batch(
    sample_config, bins, out, fake_backend_factory, signatures, label_rules, plain_raw_function
):
    bad_edges = dict(plain_raw_function, edges=5)
    bad_refs = dict(plain_raw_function, address="00402000", data_refs=7)
    names = ["one.elf", "two.elf", "three.elf"]
    write_bins(bins, *names)
    backend = fake_backend_factory(
        {
            "one.elf": {"functions": [plain_raw_function]},
            "two.elf": {"functions": [bad_edges, bad_refs]},
            "three.elf": {"functions": [plain_raw_function]},
        }
    )

    summary = orchestrator(sample_config, backend, signatures, label_rules).run(bins, out)

    assert summary.succeeded_binaries == 3
    assert summary.failed_functions == 2
    functions = load(out, "two.elf")["functions"]
    assert [f["error"]["type"] for f in functions] == ["MalformedCFG", "MalformedCFG"]
    assert json.loads((out / RUN_SUMMARY_FILE).read_text())["total_binaries"] == 3


def test_unexpected_exception_is_recorded_per_binary(
    sample_config, bins, out, fake_backend_factory, signatures, label_rules, plain_raw_function
):
    class BrokenBackend(fake_backend_factory):
        def disassemble(self, binary_path):
            if binary_path.name == "two.elf":
                raise RuntimeError("export decoder blew up")
            return super().disassemble(binary_path)

    names = ["one.elf", "two.elf", "three.elf"]
    write_bins(bins, *names)
    backend = BrokenBackend({n: {"functions": [plain_raw_function]} for n in names})

    summary = orchestrator(sample_config, backend, signatures, label_rules).run(bins, out)

    assert summary.succeeded_binaries == 2
    assert summary.failed_binaries == 1
    written = json.loads((out / RUN_SUMMARY_FILE).read_text())
    assert written["failures"][0]["binary"] == "two.elf"
    assert written["failures"][0]["error"] == "EngineOutputError"
    assert "RuntimeError" in written["failures"][0]["message"]


def test_rerun_is_byte_identical(
    sample_config, bins, out, fake_backend_factory, signatures, label_rules, aes_raw_function, plain_raw_function
):
    write_bins(bins, "a.elf")
    backend = fake_backend_factory({"a.elf": {"functions": [aes_raw_function, plain_raw_function]}})
    runner = orchestrator(sample_config, backend, signatures, label_rules)

    runner.run(bins, out)
    first = (out / "a.elf_features.json").read_bytes()
    runner.run(bins, out)
    assert (out / "a.elf_features.json").read_bytes() == first


def test_naming_collision_aborts_before_processing(
    sample_config, bins, out, fake_backend_factory, signatures, label_rules
):
    write_bins(bins, "a b.elf", "a_b.elf")
    backend = fake_backend_factory({})

    with pytest.raises(NamingCollision):
        orchestrator(sample_config, backend, signatures, label_rules).run(bins, out)
    assert backend.calls == []
    assert not out.exists()


def test_rules_referencing_unknown_signature_are_fatal(sample_config, bins, out, fake_backend_factory, signatures):
    write_bins(bins, "a.elf")
    rules = LabelRuleSet(signature_rules=(SignatureRule("has_tea_delta", "TEA"),))
    backend = fake_backend_factory({})

    with pytest.raises(RuleLoadError):
        orchestrator(sample_config, backend, signatures, rules).run(bins, out)
    assert backend.calls == []


def test_malformed_and_empty_functions_are_isolated(
    sample_config, bins, out, fake_backend_factory, signatures, label_rules,
    aes_raw_function, make_function, make_block,
):
    broken = make_function(
        "AES_broken", 0x200000, [make_block(0x200000, ["jmp"])], edges=[(0x200000, 0x999999, "unconditional")]
    )
    empty = make_function("thunk", 0x300000, [])
    write_bins(bins, "a.elf")
    backend = fake_backend_factory({"a.elf": {"functions": [aes_raw_function, broken, empty]}})

    summary = orchestrator(sample_config, backend, signatures, label_rules).run(bins, out)

    functions = load(out, "a.elf")["functions"]
    assert [f["name"] for f in functions] == ["AES_Encrypt", "AES_broken", "thunk"]

    assert functions[1]["label"] == "Unknown"
    assert functions[1]["node_level"] == []
    assert functions[1]["error"]["type"] == "MalformedCFG"
    assert functions[1]["error"]["recovered"] is False

    assert functions[2]["label"] == "Unknown"
    assert functions[2]["error"]["type"] == "EmptyFunction"
    assert functions[2]["error"]["recovered"] is True

    assert summary.succeeded_binaries == 1
    assert summary.processed_functions == 2
    assert summary.failed_functions == 1


def test_record_array_lengths_match_cfg(
    sample_config, bins, out, fake_backend_factory, signatures, label_rules, aes_raw_function, plain_raw_function
):
    write_bins(bins, "a.elf")
    backend = fake_backend_factory({"a.elf": {"functions": [aes_raw_function, plain_raw_function]}})
    orchestrator(sample_config, backend, signatures, label_rules).run(bins, out)

    doc = load(out, "a.elf")
    assert list(doc) == ["binary", "metadata", "functions"]
    assert doc["metadata"]["function_count"] == 2
    for function in doc["functions"]:
        assert len(function["node_level"]) == function["graph_level"]["num_basic_blocks"]
        assert len(function["edge_level"]) == function["graph_level"]["num_edges"]


def test_skip_existing(sample_config, bins, out, fake_backend_factory, signatures, label_rules, plain_raw_function):
    write_bins(bins, "a.elf", "b.elf")
    out.mkdir()
    (out / "a.elf_features.json").write_text("{}")
    config = sample_config.model_copy(deep=True)
    config.pipeline.skip_existing = True
    backend = fake_backend_factory({"b.elf": {"functions": [plain_raw_function]}})

    summary = orchestrator(config, backend, signatures, label_rules).run(bins, out)

    assert backend.calls == ["b.elf"]
    assert summary.skipped_binaries == 1
    assert summary.succeeded_binaries == 1
    assert (out / "a.elf_features.json").read_text() == "{}"


def test_precomputed_backend_from_config(sample_config, bins, out, plain_raw_function):
    write_bins(bins, "fw.bin")
    exports = sample_config.engine.export_dir
    (bins.parent / "exports").mkdir()
    (bins.parent / "exports" / "fw.bin.json").write_text(json.dumps([plain_raw_function]))

    assert exports == str(bins.parent / "exports")
    summary = BatchOrchestrator(sample_config, show_progress=False).run(bins, out)

    assert summary.succeeded_binaries == 1
    assert load(out, "fw.bin")["metadata"]["engine"] == "precomputed"
