"""Tests for the synthetic contract corpus."""

import json

import pytest

from taxguard.data.features.tax_features import extract_tax_features
from taxguard.data.loaders.contract_loader import load_contract_dir
from taxguard.data.loaders.synthetic_corpus import (
    KIND_LABELS,
    generate_contract,
    generate_corpus,
    write_corpus,
)
from taxguard.models.security.risk_scorer import RiskLabel, TaxRiskScorer


class TestGenerateCorpus:
    """Test suite for generate_corpus."""

    def test_same_seed_same_corpus(self):
        first = generate_corpus(20, seed=11)
        second = generate_corpus(20, seed=11)

        assert [r.to_dict() for r in first] == [r.to_dict() for r in second]

    def test_different_seed_different_corpus(self):
        assert [r.code for r in generate_corpus(20, seed=1)] != [r.code for r in generate_corpus(20, seed=2)]

    def test_every_kind_is_covered(self):
        labels = {r.label for r in generate_corpus(len(KIND_LABELS), seed=0)}

        assert labels == set(KIND_LABELS.values())

    def test_invalid_size(self):
        with pytest.raises(ValueError):
            generate_corpus(0)

    def test_unique_names_and_addresses(self):
        records = generate_corpus(50, seed=5)

        assert len({r.name for r in records}) == 50
        assert all(r.address.startswith("0x") and len(r.address) == 42 for r in records)

    def test_unknown_kind(self):
        with pytest.raises(ValueError):
            generate_contract("rugpull")


class TestGeneratedContracts:
    """The heuristic scorer agrees with the generated labels."""

    @pytest.mark.parametrize("kind", sorted(KIND_LABELS))
    def test_heuristic_label_matches_kind(self, kind):
        record = generate_contract(kind, seed=13)
        result = TaxRiskScorer().score(extract_tax_features(record.code), record.name)

        assert result.label == RiskLabel(KIND_LABELS[kind])

    def test_capped_fee_setter_is_bounded(self):
        features = extract_tax_features(generate_contract("capped_fee", seed=2).code)

        assert features.has_set_fee
        assert not features.set_fee_without_cap

    def test_uncapped_fee_setter(self):
        features = extract_tax_features(generate_contract("uncapped_fee", seed=2).code)

        assert features.set_fee_without_cap
        assert features.fee_wallet_mutable


class TestWriteCorpus:
    """Test suite for write_corpus."""

    def test_written_corpus_loads_with_labels(self, tmp_path):
        records = generate_corpus(10, seed=4)
        paths = write_corpus(records, tmp_path)

        assert len(paths) == 10
        assert json.loads(paths[0].read_text())["label"] == records[0].label

        loaded = {r.name: r.label for r in load_contract_dir(tmp_path)}
        assert loaded == {r.name: r.label for r in records}
