"""Tests for the taxguard command-line interface."""

import json
from unittest.mock import patch

import pandas as pd

from taxguard.cli import EXIT_FLAGGED, EXIT_INPUT_ERROR, EXIT_OK, main


class TestScanCommand:
    """Test suite for `taxguard scan`."""

    def test_safe_contract_exits_zero(self, fixtures_dir, capsys):
        code = main(["scan", str(fixtures_dir / "plain_token.sol")])

        assert code == EXIT_OK
        assert "plain_token" in capsys.readouterr().out

    def test_abusive_contract_exits_one(self, fixtures_dir):
        assert main(["scan", str(fixtures_dir / "honey_token.sol")]) == EXIT_FLAGGED

    def test_fail_above_threshold_is_configurable(self, fixtures_dir):
        assert main(["scan", str(fixtures_dir / "honey_token.sol"), "--fail-above", "101"]) == EXIT_OK
        assert main(["scan", str(fixtures_dir / "plain_token.sol"), "--fail-above", "0"]) == EXIT_FLAGGED

    def test_json_output_with_min_score(self, fixtures_dir, capsys):
        main(["scan", str(fixtures_dir), "--json", "--min-score", "61"])
        reports = json.loads(capsys.readouterr().out)

        assert [r["name"] for r in reports] == ["honey_token"]
        assert reports[0]["risk"]["bucket"] == "high"

    def test_missing_path_exits_two(self, tmp_path, capsys):
        code = main(["scan", str(tmp_path / "missing.sol")])

        assert code == EXIT_INPUT_ERROR
        assert "ERROR" in capsys.readouterr().err

    def test_empty_source_exits_two(self, tmp_path):
        empty = tmp_path / "empty.sol"
        empty.write_text("")

        assert main(["scan", str(empty)]) == EXIT_INPUT_ERROR

    def test_nothing_to_scan(self):
        assert main(["scan"]) == EXIT_INPUT_ERROR


class TestOtherCommands:
    """Test suite for checklist, features, generate-corpus and train."""

    def test_checklist(self, fixtures_dir, capsys):
        assert main(["checklist", str(fixtures_dir / "honey_token.sol")]) == EXIT_OK
        out = capsys.readouterr().out

        assert "== honey_token" in out
        assert "TAX-33" in out

    def test_checklist_over_directory(self, fixtures_dir, capsys):
        assert main(["checklist", str(fixtures_dir)]) == EXIT_OK
        out = capsys.readouterr().out

        headers = [line for line in out.splitlines() if line.startswith("== ")]
        assert len(headers) == len(list(fixtures_dir.glob("*.sol")))

    def test_checklist_on_empty_directory_exits_two(self, tmp_path, capsys):
        assert main(["checklist", str(tmp_path)]) == EXIT_INPUT_ERROR
        assert "ERROR" in capsys.readouterr().err

    def test_unreadable_file_exits_two(self, tmp_path, capsys):
        source = tmp_path / "token.sol"
        source.write_text("contract T {}")

        with patch("pathlib.Path.read_text", side_effect=PermissionError("denied")):
            code = main(["checklist", str(source)])

        assert code == EXIT_INPUT_ERROR
        assert "denied" in capsys.readouterr().err

    def test_features_to_csv(self, fixtures_dir, tmp_path):
        output = tmp_path / "features.csv"
        assert main(["features", str(fixtures_dir), "--output", str(output)]) == EXIT_OK

        frame = pd.read_csv(output)
        assert len(frame) == len(list(fixtures_dir.glob("*.sol")))
        assert "set_fee_without_cap" in frame.columns

    def test_generate_corpus_then_train(self, tmp_path, capsys):
        corpus = tmp_path / "corpus"
        assert main(["generate-corpus", str(corpus), "--n", "40", "--seed", "9"]) == EXIT_OK
        assert len(list(corpus.rglob("*.json"))) == 40

        output = tmp_path / "model"
        assert main(["train", "--corpus", str(corpus), "--output", str(output)]) == EXIT_OK
        assert (output / "tax_abuse_detector.joblib").exists()

        capsys.readouterr()
        code = main(["scan", str(corpus / "safe"), "--model", str(output / "tax_abuse_detector.joblib")])
        assert code == EXIT_OK
        assert "random_forest model" in capsys.readouterr().out

    def test_train_on_unlabeled_corpus_exits_two(self, tmp_path, plain_source, capsys):
        (tmp_path / "token.sol").write_text(plain_source)

        code = main(["train", "--corpus", str(tmp_path), "--output", str(tmp_path / "model")])

        assert code == EXIT_INPUT_ERROR
        assert "No labeled contracts" in capsys.readouterr().err

    def test_no_command_prints_help(self, capsys):
        assert main([]) == EXIT_OK
        assert "usage" in capsys.readouterr().out
