"""Pytest configuration and fixtures for taxguard tests."""

from pathlib import Path

import pytest

from taxguard.config import DetectorConfig
from taxguard.data.loaders.synthetic_corpus import generate_contract, generate_corpus

FIXTURES_DIR = Path(__file__).parent / "fixtures"


# ============================================================================
# CONTRACT SOURCE FIXTURES
# ============================================================================

@pytest.fixture(scope="session")
def fixtures_dir():
    """Directory holding the sample .sol files."""
    return FIXTURES_DIR


@pytest.fixture(scope="session")
def plain_source():
    """Minimal ERC-20 without any fee logic."""
    return (FIXTURES_DIR / "plain_token.sol").read_text()


@pytest.fixture(scope="session")
def honey_source():
    """Owner-controlled, uncapped sell fee credited to the owner."""
    return (FIXTURES_DIR / "honey_token.sol").read_text()


@pytest.fixture(scope="session")
def capped_source():
    """Single transfer fee with an owner setter bounded at 5%."""
    return (FIXTURES_DIR / "capped_fee_token.sol").read_text()


@pytest.fixture(scope="session")
def sell_trap_source():
    """Generated token with a 99% sell fee."""
    return generate_contract("sell_trap", seed=7).code


@pytest.fixture(scope="session")
def launch_trap_source():
    """Generated token with a launch-window fee, blacklist and trading toggle."""
    return generate_contract("launch_trap", seed=7).code


@pytest.fixture(scope="session")
def reflection_source():
    """Generated reflection token with an uncapped tax setter."""
    return generate_contract("reflection_trap", seed=7).code


# ============================================================================
# CORPUS AND MODEL FIXTURES
# ============================================================================

@pytest.fixture(scope="session")
def synthetic_corpus():
    """Small labeled corpus covering every contract kind."""
    return generate_corpus(70, seed=3)


@pytest.fixture(scope="session")
def trained_detector(synthetic_corpus):
    """RandomForest detector trained on the synthetic corpus."""
    from taxguard.data.features.tax_features import build_feature_frame
    from taxguard.models.security.tax_abuse_detector import TaxAbuseDetector

    frame = build_feature_frame(synthetic_corpus)
    detector = TaxAbuseDetector(model_type="random_forest", n_estimators=50)
    detector.train(frame, frame["label"].tolist())
    return detector


@pytest.fixture
def heuristic_config(tmp_path):
    """Config with no model and no registry."""
    return DetectorConfig(model_path=None, registry_dir=None, max_source_bytes=50_000)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep TAXGUARD_* settings from the host out of the tests."""
    for name in (
        "TAXGUARD_CONFIG", "TAXGUARD_MODEL_PATH", "TAXGUARD_MODEL_TYPE", "TAXGUARD_REGISTRY_DIR",
        "TAXGUARD_LOG_LEVEL", "TAXGUARD_MAX_SOURCE_BYTES", "ETHERSCAN_API_KEY", "ETHERSCAN_API_URL",
    ):
        monkeypatch.delenv(name, raising=False)
