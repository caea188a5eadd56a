"""
Token Tax Feature Engineering Module

Static feature extraction for ERC-20 token contracts. Every feature is a
boolean indicator or a small numeric measurement read from the Solidity
source; together they describe how a token charges transfer fees, who
controls them, who is exempt and where the proceeds go.

Features:
- Fee variable, fee setter and setter upper-bound detection
- Buy/sell asymmetry and extreme literal fee rates (normalized to percent)
- Whitelist, blacklist and AMM pair-based fee branching
- Fee destination analysis (owner and mutable marketing wallets)
- Reflection, swap-back, launch-time and trading-toggle mechanics
- DataFrame assembly for model training and batch scoring
"""

import logging
import re
from collections import Counter
from dataclasses import asdict, dataclass, fields
from typing import Dict, Iterable, List, Optional, Sequence, Union

import numpy as np
import pandas as pd

from taxguard.data.preprocessing.solidity_source import (
    SolidityFunction,
    SoliditySource,
    parse_source,
)

logger = logging.getLogger(__name__)

SETTER_NAME_RE = re.compile(
    r'^_?(?:set|update|change|adjust|modify|edit)\w*(?:fee|tax)', re.IGNORECASE
)
WALLET_SETTER_RE = re.compile(
    r'^_?(?:set|update|change)\w*(?:wallet|receiver|recipient|feeaddress|taxaddress)',
    re.IGNORECASE,
)
OWNER_GUARDS = {
    'onlyOwner', 'onlyAdmin', 'onlyRole', 'authorized', 'onlyDev',
    'onlyOperator', 'onlyManager', 'onlyMarketing', 'onlyAuthorized',
}
OWNER_CHECK_RE = re.compile(
    r'(?:msg\.sender|_msgSender\(\))\s*==\s*(?:_?owner\b|owner\(\)|_?dev\w*|_?marketing\w*)'
)
TRANSFER_FUNCTIONS = {'_transfer', 'transfer', 'transferFrom', '_tokenTransfer', '_transferStandard'}
FEE_HELPER_CALL_RE = re.compile(
    r'\b(?:_takeFee|takeFee|_calculateFee|calculateFee|_getValues|_getTValues|'
    r'_takeTax|calculateTaxFee|_takeFees|_calculateTax)\s*\('
)
DENOMINATOR_NAME_RE = re.compile(r'denominator|divisor|base|precision', re.IGNORECASE)
DENOMINATOR_USE_RE = re.compile(
    r'(?:fee|tax)\w*\s*\)?\s*(?:/|\.div\s*\()\s*\(?\s*(100|1000|10000)\b', re.IGNORECASE
)
FEE_ASSIGN_RE = re.compile(r'\b([A-Za-z_$][\w$]*)\s*=(?!=)\s*(\d+)\s*;')

WHITELIST_RE = re.compile(
    r'isExcludedFromFees?|excludeFromFees?|isFeeExempt|feeExempt|_isExcluded\b|whitelist',
    re.IGNORECASE,
)
BLACKLIST_RE = re.compile(
    r'blacklist|blocklist|isBot\b|_bots\b|\bbots\s*\[|isSniper|_blocked\b', re.IGNORECASE
)
PAIR_BRANCH_RE = re.compile(
    r'\b(?:from|to|sender|recipient|_from|_to)\s*==\s*\w*pair\b'
    r'|\b\w*pair\s*==\s*(?:from|to|sender|recipient|_from|_to)\b'
    r'|\b\w*pairs?\s*\[\s*(?:from|to|sender|recipient|_from|_to)\s*\]',
    re.IGNORECASE,
)
_BALANCES = r'(?:_balances|_rOwned|_tOwned|balances)'
_RECIPIENT = r'(?:owner\(\)|_owner|owner|_?wallet|\w+(?:Wallet|Receiver|Recipient))'
FEE_TO_OWNER_RE = re.compile(
    _BALANCES + r'\s*\[\s*' + _RECIPIENT + r'\s*\]\s*'
    r'(?:\+=|=\s*' + _BALANCES + r'\s*\[[^\]]*\]\s*\.\s*add\s*\()'
    r'|\b(?:_transfer|super\._transfer|_basicTransfer|_transferStandard)\s*\(\s*[^,;()]+,\s*'
    + _RECIPIENT + r'\s*,'
    r'|payable\s*\(\s*' + _RECIPIENT + r'\s*\)\s*\.\s*(?:transfer|send|call)'
    r'|\b\w*(?:Wallet|wallet)\s*\.\s*(?:transfer|send|call)\b'
)
REFLECTION_RE = re.compile(r'\b(?:_rOwned|_tOwned|_rTotal|_getRValues|tokenFromReflection|reflectionFromToken)\b')
SWAP_BACK_RE = re.compile(r'\b(?:swapAndLiquify|swapTokensForEth|swapTokensForETH|swapBack)\b')
BLOCK_TIME_RE = re.compile(
    r'\bblock\.(?:timestamp|number)\b|\b(?:launchTime|launchedAt|launchBlock|_launchTime|tradingStartTime|deadBlocks)\b'
)
MAX_TX_RE = re.compile(r'\b_?max(?:Tx|Transaction|Wallet|Sell)\w*', re.IGNORECASE)
TRADING_TOGGLE_RE = re.compile(r'\b(?:tradingEnabled|tradingOpen|tradingActive|enableTrading|openTrading)\b')
IDENTIFIER_RE = re.compile(r'\b[A-Za-z_$][\w$]*\b')
COMPARISON_RE = re.compile(r'(?<![<>])(<=|>=|<|>)(?![<>=])')
GUARD_CLAUSE_RE = re.compile(r'\b(require|if|assert)\s*\(')
REVERT_RE = re.compile(r'\s*\{?\s*(?:revert\b|throw\b)')


@dataclass
class TaxFeatures:
    """Static tax-abuse indicators for one contract."""
    has_fee_variable: bool = False
    has_set_fee: bool = False
    set_fee_without_cap: bool = False
    owner_only_fee_setter: bool = False
    has_separate_buy_sell_fee: bool = False
    max_fee_literal: float = 0.0  # percent
    sell_buy_fee_ratio: float = 0.0
    has_whitelist: bool = False
    has_blacklist: bool = False
    has_pair_detection: bool = False
    transfer_overridden: bool = False
    fee_in_transfer: bool = False
    fee_to_owner: bool = False
    fee_wallet_mutable: bool = False
    has_reflection: bool = False
    has_swap_and_liquify: bool = False
    time_based_fee: bool = False
    has_max_tx_limit: bool = False
    has_trading_toggle: bool = False
    has_renounce_ownership: bool = False
    fee_identifier_count: int = 0
    fee_setter_count: int = 0
    owner_function_count: int = 0
    loc: int = 0

    def to_dict(self) -> Dict[str, float]:
        """Numeric view, booleans as 0.0/1.0."""
        return {name: float(value) for name, value in asdict(self).items()}

    def to_vector(self, feature_names: Optional[Sequence[str]] = None) -> np.ndarray:
        values = self.to_dict()
        return np.array([values[name] for name in (feature_names or FEATURE_NAMES)], dtype=float)

    @classmethod
    def from_dict(cls, values: Dict[str, float]) -> 'TaxFeatures':
        kwargs = {}
        for f in fields(cls):
            if f.name not in values:
                continue
            raw = values[f.name]
            if f.type is bool:
                kwargs[f.name] = bool(raw)
            elif f.type is int:
                kwargs[f.name] = int(raw)
            else:
                kwargs[f.name] = float(raw)
        return cls(**kwargs)

    def active_indicators(self) -> List[str]:
        return [f.name for f in fields(self) if f.type is bool and getattr(self, f.name)]


FEATURE_NAMES: List[str] = [f.name for f in fields(TaxFeatures)]
BOOLEAN_FEATURES: List[str] = [f.name for f in fields(TaxFeatures) if f.type is bool]


def is_fee_identifier(name: str) -> bool:
    lowered = name.lower()
    if 'feed' in lowered or 'taxonomy' in lowered:
        return False
    return 'fee' in lowered or 'tax' in lowered


def _fee_identifiers(code: str) -> List[str]:
    return sorted({name for name in IDENTIFIER_RE.findall(code) if is_fee_identifier(name)})


def _is_fee_setter(function: SolidityFunction, fee_variables: Iterable[str]) -> bool:
    if function.kind != 'function' or not function.has_body or function.is_view:
        return False
    if function.name in TRANSFER_FUNCTIONS:
        return False
    if SETTER_NAME_RE.match(function.name):
        return True
    return any(re.search(rf'\b{re.escape(var)}\s*=(?!=)', function.body) for var in fee_variables)


def _is_owner_gated(function: SolidityFunction) -> bool:
    if any(modifier in OWNER_GUARDS for modifier in function.modifiers):
        return True
    return bool(OWNER_CHECK_RE.search(function.body))


def _guard_conditions(body: str):
    """
    Yield ``(condition, negated)`` for each require/assert/if in a body.

    ``negated`` is True for ``if (...) revert`` style guards, where the
    condition describes the rejected values rather than the accepted ones.
    """
    for match in GUARD_CLAUSE_RE.finditer(body):
        depth, index = 1, match.end()
        while index < len(body) and depth:
            if body[index] == '(':
                depth += 1
            elif body[index] == ')':
                depth -= 1
            index += 1
        condition = body[match.end():index - 1 if depth == 0 else index]
        negated = match.group(1) == 'if' and bool(REVERT_RE.match(body, index))
        yield condition, negated


def _bounds_from_above(condition: str, name: str, negated: bool) -> bool:
    """True when ``condition`` puts ``name`` on the small side of a comparison."""
    pattern = re.compile(rf'\b{re.escape(name)}\b')
    for atom in re.split(r'&&|\|\|', condition):
        comparison = COMPARISON_RE.search(atom)
        if not comparison:
            continue
        left, right = atom[:comparison.start()], atom[comparison.end():]
        small_side = left if comparison.group(1).startswith('<') else right
        if negated:
            small_side = right if small_side is left else left
        if pattern.search(small_side):
            return True
    return False


def _setter_is_capped(function: SolidityFunction, fee_variables: Iterable[str]) -> bool:
    """True when a guard clause puts an upper bound on the setter's inputs or targets."""
    guarded_names = set(function.parameters)
    guarded_names.update(
        var for var in fee_variables if re.search(rf'\b{re.escape(var)}\s*=(?!=)', function.body)
    )
    for condition, negated in _guard_conditions(function.body):
        if any(_bounds_from_above(condition, name, negated) for name in guarded_names):
            return True
    return False


def _fee_denominator(source: SoliditySource) -> int:
    """Most common percent denominator used in fee arithmetic, 100 by default."""
    candidates = [int(value) for value in DENOMINATOR_USE_RE.findall(source.code)]
    for name, init in source.state_variables.items():
        if init and DENOMINATOR_NAME_RE.search(name) and is_fee_identifier(name):
            literal = re.fullmatch(r'\s*(\d+)\s*', init)
            if literal and int(literal.group(1)) in (100, 1000, 10000):
                candidates.append(int(literal.group(1)))
    if not candidates:
        return 100
    return Counter(candidates).most_common(1)[0][0]


def _fee_literals(source: SoliditySource) -> Dict[str, float]:
    """Largest integer literal assigned to each fee identifier."""
    literals: Dict[str, float] = {}

    def _record(name: str, value: int) -> None:
        if not is_fee_identifier(name) or DENOMINATOR_NAME_RE.search(name):
            return
        if re.search(r'wallet|address|receiver|recipient|threshold|amount|limit', name, re.IGNORECASE):
            return
        literals[name] = max(literals.get(name, 0.0), float(value))

    for name, init in source.state_variables.items():
        if init:
            literal = re.fullmatch(r'\s*(\d+)\s*', init)
            if literal:
                _record(name, int(literal.group(1)))

    for name, value in FEE_ASSIGN_RE.findall(source.code):
        _record(name, int(value))

    return literals


def _time_based_fee(source: SoliditySource) -> bool:
    for function in source.functions:
        if not function.has_body:
            continue
        if is_fee_identifier(function.name) and BLOCK_TIME_RE.search(function.body):
            return True
        if function.name not in TRANSFER_FUNCTIONS:
            continue
        for statement in function.body.split(';'):
            if BLOCK_TIME_RE.search(statement) and any(
                is_fee_identifier(name) for name in IDENTIFIER_RE.findall(statement)
            ):
                return True
    return False


def extract_tax_features(source: Union[str, SoliditySource]) -> TaxFeatures:
    """
    Extract static tax-abuse features from contract source.

    Args:
        source: Raw Solidity text or an already parsed :class:`SoliditySource`

    Returns:
        TaxFeatures for the contract; an empty source yields all zeros
    """
    if isinstance(source, str):
        source = parse_source(source)

    code = source.code
    features = TaxFeatures()
    if not code.strip():
        return features

    fee_identifiers = _fee_identifiers(code)
    fee_variables = [name for name in source.state_variables if is_fee_identifier(name)]

    setters = [f for f in source.functions if _is_fee_setter(f, fee_variables)]
    transfer_functions = [
        f for f in source.functions if f.name in TRANSFER_FUNCTIONS and f.has_body
    ]

    features.has_fee_variable = bool(fee_variables)
    features.has_set_fee = bool(setters)
    features.fee_setter_count = len(setters)
    features.set_fee_without_cap = any(
        f.parameters and not _setter_is_capped(f, fee_variables) for f in setters
    )
    features.owner_only_fee_setter = any(_is_owner_gated(f) for f in setters)

    lowered = [name.lower() for name in fee_identifiers]
    features.has_separate_buy_sell_fee = (
        any('buy' in name for name in lowered) and any('sell' in name for name in lowered)
    )

    denominator = _fee_denominator(source)
    literals = {
        name: min(100.0, value * 100.0 / denominator)
        for name, value in _fee_literals(source).items()
    }
    if literals:
        features.max_fee_literal = max(literals.values())
    sell = [v for name, v in literals.items() if 'sell' in name.lower()]
    buy = [v for name, v in literals.items() if 'buy' in name.lower()]
    if sell:
        features.sell_buy_fee_ratio = max(sell) / max(max(buy) if buy else 0.0, 1.0)

    features.has_whitelist = bool(WHITELIST_RE.search(code))
    features.has_blacklist = bool(BLACKLIST_RE.search(code))
    features.has_pair_detection = bool(PAIR_BRANCH_RE.search(code))

    features.transfer_overridden = bool(transfer_functions)
    features.fee_in_transfer = any(
        FEE_HELPER_CALL_RE.search(f.body) or _fee_identifiers(f.body)
        for f in transfer_functions
    )
    features.fee_to_owner = bool(FEE_TO_OWNER_RE.search(code))
    features.fee_wallet_mutable = any(
        WALLET_SETTER_RE.match(f.name) for f in source.functions if f.kind == 'function'
    )

    features.has_reflection = bool(REFLECTION_RE.search(code))
    features.has_swap_and_liquify = bool(SWAP_BACK_RE.search(code))
    features.time_based_fee = _time_based_fee(source)
    features.has_max_tx_limit = bool(MAX_TX_RE.search(code))
    features.has_trading_toggle = bool(TRADING_TOGGLE_RE.search(code))
    features.has_renounce_ownership = bool(source.functions_named('renounceOwnership'))

    features.fee_identifier_count = len(fee_identifiers)
    features.owner_function_count = sum(
        1 for f in source.functions if f.kind == 'function' and _is_owner_gated(f)
    )
    features.loc = sum(1 for line in code.splitlines() if line.strip())

    return features


def build_feature_frame(records: Iterable) -> pd.DataFrame:
    """
    One row per contract with ``FEATURE_NAMES`` columns.

    ``records`` are ContractRecord-like objects (``address``, ``name``,
    ``code`` and optional ``label`` attributes) or dicts with those keys.
    """
    rows = []
    for record in records:
        get = record.get if isinstance(record, dict) else lambda key, default=None: getattr(record, key, default)
        row = {
            'address': get('address', ''),
            'name': get('name', ''),
        }
        row.update(extract_tax_features(get('code', '') or '').to_dict())
        label = get('label', None)
        if label is not None:
            row['label'] = label
        rows.append(row)

    columns = ['address', 'name'] + FEATURE_NAMES
    frame = pd.DataFrame(rows, columns=columns + (['label'] if any('label' in r for r in rows) else []))
    logger.debug(f"Built feature frame with {len(frame)} rows")
    return frame
