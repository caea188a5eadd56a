"""Tests for contract source loaders."""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from taxguard.data.loaders.contract_loader import (
    ContractRecord,
    ContractSourceError,
    EtherscanLoader,
    load_contract_dir,
    load_contract_file,
    load_labeled_csv,
    load_paths,
    parse_getsourcecode_response,
)


class TestFileLoading:
    """Test suite for .sol and .json loading."""

    def test_directory_is_not_a_file(self, fixtures_dir):
        with pytest.raises(ContractSourceError, match="not a regular file"):
            load_contract_file(fixtures_dir)

    def test_sol_file(self, fixtures_dir):
        records = load_contract_file(fixtures_dir / "honey_token.sol")

        assert len(records) == 1
        assert records[0].name == "honey_token"
        assert records[0].label is None
        assert "contract HoneyToken" in records[0].code

    def test_json_record_and_list(self, tmp_path, plain_source):
        single = tmp_path / "one.json"
        single.write_text(json.dumps({"address": "0x1", "name": "Plain", "code": plain_source, "label": "safe"}))
        many = tmp_path / "many.json"
        many.write_text(json.dumps([
            {"address": "0x2", "SourceCode": plain_source, "ContractName": "A"},
            {"address": "0x3", "source": plain_source},
        ]))

        one = load_contract_file(single)[0]
        assert one.contract_id == "0x1"
        assert one.label == "safe"

        names = [r.name for r in load_contract_file(many)]
        assert names == ["A", "many"]

    def test_json_without_code(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text(json.dumps({"address": "0x1"}))

        with pytest.raises(ContractSourceError):
            load_contract_file(path)

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{not json")

        with pytest.raises(ContractSourceError):
            load_contract_file(path)

    def test_missing_and_unsupported_files(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_contract_file(tmp_path / "nope.sol")

        other = tmp_path / "token.txt"
        other.write_text("contract A {}")
        with pytest.raises(ContractSourceError):
            load_contract_file(other)


class TestDirectoryLoading:
    """Test suite for labeled directory loading."""

    def test_labels_from_directory_names(self, tmp_path, plain_source, honey_source):
        (tmp_path / "safe").mkdir()
        (tmp_path / "scams" / "batch1").mkdir(parents=True)
        (tmp_path / "safe" / "plain.sol").write_text(plain_source)
        (tmp_path / "scams" / "batch1" / "honey.sol").write_text(honey_source)
        (tmp_path / "notes.md").write_text("ignored")

        records = {r.name: r for r in load_contract_dir(tmp_path)}

        assert set(records) == {"plain", "honey"}
        assert records["plain"].label == "safe"
        assert records["honey"].label == "tax_abuse_candidate"

    def test_explicit_label_wins(self, tmp_path, plain_source):
        (tmp_path / "scams").mkdir()
        (tmp_path / "scams" / "x.json").write_text(json.dumps({"code": plain_source, "label": "safe"}))

        assert load_contract_dir(tmp_path)[0].label == "safe"

    def test_load_paths_mixes_files_and_dirs(self, fixtures_dir):
        records = load_paths([fixtures_dir / "plain_token.sol", fixtures_dir])

        assert len(records) == 1 + len(list(fixtures_dir.glob("*.sol")))


class TestCsvLoading:
    """Test suite for labeled CSV manifests."""

    def test_csv_with_paths(self, tmp_path, fixtures_dir, plain_source):
        (tmp_path / "src").mkdir()
        (tmp_path / "src" / "plain.sol").write_text(plain_source)
        manifest = tmp_path / "labels.csv"
        manifest.write_text("address,path,label\n0xaa,src/plain.sol,safe\n")

        records = load_labeled_csv(manifest)

        assert len(records) == 1
        assert records[0].address == "0xaa"
        assert records[0].name == "plain"
        assert records[0].label == "safe"

    def test_csv_requires_label(self, tmp_path):
        manifest = tmp_path / "labels.csv"
        manifest.write_text("address,code\n0x1,contract A {}\n")

        with pytest.raises(ContractSourceError):
            load_labeled_csv(manifest)

    def test_csv_missing_source_file(self, tmp_path):
        manifest = tmp_path / "labels.csv"
        manifest.write_text("path,label\nmissing.sol,safe\n")

        with pytest.raises(ContractSourceError):
            load_labeled_csv(manifest)


class TestEtherscan:
    """Test suite for Etherscan response parsing and fetching."""

    def test_verified_response(self, plain_source):
        payload = {"status": "1", "message": "OK",
                   "result": [{"SourceCode": plain_source, "ContractName": "PlainToken"}]}
        record = parse_getsourcecode_response("0xabc", payload)

        assert isinstance(record, ContractRecord)
        assert record.name == "PlainToken"
        assert record.address == "0xabc"

    def test_unverified_response(self):
        payload = {"status": "1", "message": "OK", "result": [{"SourceCode": "", "ContractName": ""}]}

        assert parse_getsourcecode_response("0xabc", payload) is None

    def test_error_response(self):
        payload = {"status": "0", "message": "NOTOK", "result": "Invalid API Key"}

        with pytest.raises(ContractSourceError, match="Invalid API Key"):
            parse_getsourcecode_response("0xabc", payload)

    def test_fetch_source_with_session(self, plain_source):
        response = MagicMock()
        response.status = 200
        response.json = AsyncMock(return_value={
            "status": "1", "result": [{"SourceCode": plain_source, "ContractName": "PlainToken"}],
        })
        context = MagicMock()
        context.__aenter__ = AsyncMock(return_value=response)
        context.__aexit__ = AsyncMock(return_value=False)
        session = MagicMock()
        session.get.return_value = context

        loader = EtherscanLoader(api_key="key")
        record = asyncio.run(loader.fetch_source("0xabc", session=session))

        assert record.name == "PlainToken"
        params = session.get.call_args.kwargs["params"]
        assert params["action"] == "getsourcecode"
        assert params["apikey"] == "key"

    def test_fetch_source_http_error(self):
        response = MagicMock()
        response.status = 503
        context = MagicMock()
        context.__aenter__ = AsyncMock(return_value=response)
        context.__aexit__ = AsyncMock(return_value=False)
        session = MagicMock()
        session.get.return_value = context

        with pytest.raises(ContractSourceError):
            asyncio.run(EtherscanLoader(api_key=None).fetch_source("0xabc", session=session))

    def test_fetch_source_timeout(self):
        context = MagicMock()
        context.__aenter__ = AsyncMock(side_effect=asyncio.TimeoutError())
        context.__aexit__ = AsyncMock(return_value=False)
        session = MagicMock()
        session.get.return_value = context

        with pytest.raises(ContractSourceError, match="TimeoutError"):
            asyncio.run(EtherscanLoader(api_key=None).fetch_source("0xabc", session=session))
