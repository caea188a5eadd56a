"""
Tax Abuse Risk Scoring

Converts a tax-abuse probability into the 0-100 risk score, its bucket and
the final label, and provides a transparent weighted-indicator model for
when no trained classifier is available.

Score buckets:
- 0-20   low     -> safe
- 21-60  medium  -> suspicious
- 61-100 high    -> tax_abuse_candidate
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Tuple

from taxguard.data.features.tax_features import TaxFeatures

logger = logging.getLogger(__name__)


class RiskBucket(str, Enum):
    LOW = 'low'
    MEDIUM = 'medium'
    HIGH = 'high'


class RiskLabel(str, Enum):
    SAFE = 'safe'
    SUSPICIOUS = 'suspicious'
    TAX_ABUSE_CANDIDATE = 'tax_abuse_candidate'


BUCKET_THRESHOLDS: Dict[RiskBucket, Tuple[int, int]] = {
    RiskBucket.LOW: (0, 20),
    RiskBucket.MEDIUM: (21, 60),
    RiskBucket.HIGH: (61, 100),
}

BUCKET_LABELS = {
    RiskBucket.LOW: RiskLabel.SAFE,
    RiskBucket.MEDIUM: RiskLabel.SUSPICIOUS,
    RiskBucket.HIGH: RiskLabel.TAX_ABUSE_CANDIDATE,
}

# Human-readable text for each boolean indicator.
INDICATOR_DESCRIPTIONS = {
    'has_fee_variable': 'Contract declares fee or tax state variables',
    'has_set_fee': 'Fee rates can be changed after deployment',
    'set_fee_without_cap': 'Fee setter has no upper bound on the new rate',
    'owner_only_fee_setter': 'Only the owner can change fee rates',
    'has_separate_buy_sell_fee': 'Buy and sell are taxed separately',
    'has_whitelist': 'Selected addresses are exempt from fees',
    'has_blacklist': 'Addresses can be blacklisted from transfers',
    'has_pair_detection': 'Fees depend on whether the AMM pair is involved',
    'transfer_overridden': 'Transfer logic is customised',
    'fee_in_transfer': 'Fees are taken inside the transfer path',
    'fee_to_owner': 'Fees are credited to the owner or a team wallet',
    'fee_wallet_mutable': 'The fee recipient wallet can be changed',
    'has_reflection': 'Reflection accounting obscures fee flows',
    'has_swap_and_liquify': 'Collected fees are swapped automatically',
    'time_based_fee': 'Fee rate depends on block time or launch window',
    'has_max_tx_limit': 'Transaction or wallet size limits exist',
    'has_trading_toggle': 'Trading can be enabled or disabled by the owner',
    'has_renounce_ownership': 'Ownership can be renounced',
}


@dataclass
class TaxRiskScore:
    """Risk assessment for one contract."""
    contract_id: str
    probability: float
    risk_score: int
    bucket: RiskBucket
    label: RiskLabel
    risk_factors: List[str] = field(default_factory=list)
    contributions: Dict[str, float] = field(default_factory=dict)
    model: str = 'heuristic'
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, object]:
        return {
            'contract_id': self.contract_id,
            'probability': round(float(self.probability), 6),
            'risk_score': self.risk_score,
            'bucket': self.bucket.value,
            'label': self.label.value,
            'risk_factors': list(self.risk_factors),
            'contributions': {k: round(float(v), 6) for k, v in self.contributions.items()},
            'model': self.model,
            'timestamp': self.timestamp.isoformat(),
        }


def probability_to_score(probability: float) -> int:
    """Map a probability to an integer score in 0-100; out-of-range input is clamped."""
    if probability is None or math.isnan(probability):
        raise ValueError("Probability must be a number")
    return int(round(100 * min(1.0, max(0.0, float(probability)))))


def score_to_bucket(score: int) -> RiskBucket:
    if score <= BUCKET_THRESHOLDS[RiskBucket.LOW][1]:
        return RiskBucket.LOW
    if score <= BUCKET_THRESHOLDS[RiskBucket.MEDIUM][1]:
        return RiskBucket.MEDIUM
    return RiskBucket.HIGH


def bucket_to_label(bucket: RiskBucket) -> RiskLabel:
    return BUCKET_LABELS[RiskBucket(bucket)]


def describe_risk_factors(features: TaxFeatures) -> List[str]:
    """Readable risk factors for the active indicators and notable measurements."""
    factors = [
        INDICATOR_DESCRIPTIONS[name]
        for name in features.active_indicators()
        if name in INDICATOR_DESCRIPTIONS and name not in ('has_renounce_ownership', 'transfer_overridden')
    ]
    if features.max_fee_literal > 25:
        factors.append(f"Fee literal of {features.max_fee_literal:.1f}% found")
    if features.sell_buy_fee_ratio > 3:
        factors.append(f"Sell fee is {features.sell_buy_fee_ratio:.1f}x the buy fee")
    return factors


class HeuristicTaxScorer:
    """
    Weighted-indicator tax abuse model.

    The logit is the weighted sum of boolean indicators plus two piecewise
    linear terms for extreme and asymmetric fee literals, minus a bias. All
    weights are non-negative, so switching any indicator on never lowers the
    score.
    """

    DEFAULT_WEIGHTS = {
        'set_fee_without_cap': 2.5,
        'time_based_fee': 1.2,
        'has_blacklist': 1.2,
        'has_trading_toggle': 0.5,
        'fee_to_owner': 0.4,
        'has_set_fee': 0.3,
        'owner_only_fee_setter': 0.3,
        'has_whitelist': 0.3,
        'fee_in_transfer': 0.3,
        'fee_wallet_mutable': 0.3,
        'has_fee_variable': 0.2,
        'has_pair_detection': 0.2,
        'has_separate_buy_sell_fee': 0.2,
        'has_reflection': 0.2,
        'has_swap_and_liquify': 0.1,
        'has_max_tx_limit': 0.1,
    }

    def __init__(self,
                 weights: Optional[Dict[str, float]] = None,
                 bias: float = 3.0,
                 fee_literal_weight: float = 0.08,
                 fee_literal_floor: float = 10.0,
                 asymmetry_weight: float = 0.3,
                 asymmetry_cap: float = 10.0):
        self.weights = dict(self.DEFAULT_WEIGHTS)
        if weights:
            self.weights.update(weights)
        if any(w < 0 for w in self.weights.values()):
            raise ValueError("Indicator weights must be non-negative")

        self.bias = bias
        self.fee_literal_weight = fee_literal_weight
        self.fee_literal_floor = fee_literal_floor
        self.asymmetry_weight = asymmetry_weight
        self.asymmetry_cap = asymmetry_cap

    def contributions(self, features: TaxFeatures) -> Dict[str, float]:
        """Per-feature logit contributions, largest first."""
        values = features.to_dict()
        contributions = {
            name: weight * values[name]
            for name, weight in self.weights.items()
            if values.get(name)
        }

        excess_fee = max(0.0, features.max_fee_literal - self.fee_literal_floor)
        if excess_fee:
            contributions['max_fee_literal'] = self.fee_literal_weight * excess_fee

        asymmetry = min(max(features.sell_buy_fee_ratio - 1.0, 0.0), self.asymmetry_cap)
        if asymmetry:
            contributions['sell_buy_fee_ratio'] = self.asymmetry_weight * asymmetry

        return dict(sorted(contributions.items(), key=lambda kv: -abs(kv[1])))

    def predict_proba(self, features: TaxFeatures) -> float:
        logit = sum(self.contributions(features).values()) - self.bias
        return 1.0 / (1.0 + math.exp(-logit))


class TaxRiskScorer:
    """Builds :class:`TaxRiskScore` results from features and a probability source."""

    def __init__(self, heuristic: Optional[HeuristicTaxScorer] = None):
        self.heuristic = heuristic or HeuristicTaxScorer()
        self.logger = logging.getLogger(__name__)

    def from_probability(self,
                         probability: float,
                         features: TaxFeatures,
                         contract_id: str,
                         contributions: Optional[Dict[str, float]] = None,
                         model: str = 'heuristic') -> TaxRiskScore:
        score = probability_to_score(probability)
        bucket = score_to_bucket(score)
        return TaxRiskScore(
            contract_id=contract_id,
            probability=min(1.0, max(0.0, float(probability))),
            risk_score=score,
            bucket=bucket,
            label=bucket_to_label(bucket),
            risk_factors=describe_risk_factors(features),
            contributions=contributions or {},
            model=model,
        )

    def score(self, features: TaxFeatures, contract_id: str, model=None) -> TaxRiskScore:
        """
        Score a contract.

        Args:
            features: Extracted tax features
            contract_id: Address or name used to identify the result
            model: Optional trained TaxAbuseDetector; the heuristic is used otherwise

        Returns:
            TaxRiskScore
        """
        if model is not None and model.is_trained:
            probability = float(model.predict_proba_features(features))
            contributions = model.explain(features)
            model_name = model.model_type
        else:
            probability = self.heuristic.predict_proba(features)
            contributions = self.heuristic.contributions(features)
            model_name = 'heuristic'

        result = self.from_probability(probability, features, contract_id, contributions, model_name)
        self.logger.debug(f"Scored {contract_id}: {result.risk_score} ({result.label.value})")
        return result
