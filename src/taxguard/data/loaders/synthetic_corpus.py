"""
Synthetic Token Contract Corpus

Template-generated ERC-20 contracts with known tax behaviour, used to
bootstrap training when no labeled corpus is available and to exercise the
detector end to end. In production, train on labeled verified contracts.

Contract kinds and labels:
- plain            safe                 no fee logic
- fixed_fee        safe                 small constant burn fee, no setter
- capped_fee       suspicious           owner-set buy/sell fees with an upper bound
- uncapped_fee     tax_abuse_candidate  owner-set fees with no bound
- sell_trap        tax_abuse_candidate  ~99% sell fee behind pair detection
- launch_trap      tax_abuse_candidate  launch-window fee, blacklist, trading toggle
- reflection_trap  tax_abuse_candidate  reflection token with an uncapped fee setter
"""

import json
import logging
from pathlib import Path
from string import Template
from typing import Dict, List, Union

import numpy as np

from taxguard.data.loaders.contract_loader import ContractRecord

logger = logging.getLogger(__name__)

KIND_LABELS = {
    'plain': 'safe',
    'fixed_fee': 'safe',
    'capped_fee': 'suspicious',
    'uncapped_fee': 'tax_abuse_candidate',
    'sell_trap': 'tax_abuse_candidate',
    'launch_trap': 'tax_abuse_candidate',
    'reflection_trap': 'tax_abuse_candidate',
}

KIND_WEIGHTS = {
    'plain': 0.20,
    'fixed_fee': 0.15,
    'capped_fee': 0.20,
    'uncapped_fee': 0.15,
    'sell_trap': 0.10,
    'launch_trap': 0.10,
    'reflection_trap': 0.10,
}

_PREFIXES = ['Moon', 'Safe', 'Doge', 'Shiba', 'Rocket', 'Elon', 'Pepe', 'Floki', 'Baby', 'Meta', 'Based', 'Turbo']
_SUFFIXES = ['Token', 'Inu', 'Coin', 'Finance', 'Swap', 'Cash', 'Gold', 'AI', 'Protocol', 'X']

_HEADER = """// SPDX-License-Identifier: MIT
pragma solidity ^0.8.19;

contract $contract {
    string public constant name = "$display";
    string public constant symbol = "$symbol";
    uint8 public constant decimals = 18;
    uint256 public totalSupply;

    mapping(address => uint256) private _balances;
    mapping(address => mapping(address => uint256)) private _allowances;

    event Transfer(address indexed from, address indexed to, uint256 value);
    event Approval(address indexed holder, address indexed spender, uint256 value);
"""

_OWNABLE = """
    address private _owner;

    modifier onlyOwner() {
        require(msg.sender == _owner, "Ownable: caller is not the owner");
        _;
    }

    function owner() public view returns (address) {
        return _owner;
    }

    function renounceOwnership() external onlyOwner {
        _owner = address(0);
    }
"""

_ERC20_API = """
    function balanceOf(address account) external view returns (uint256) {
        return _balances[account];
    }

    function allowance(address holder, address spender) external view returns (uint256) {
        return _allowances[holder][spender];
    }

    function approve(address spender, uint256 amount) external returns (bool) {
        _allowances[msg.sender][spender] = amount;
        emit Approval(msg.sender, spender, amount);
        return true;
    }

    function transfer(address to, uint256 amount) external returns (bool) {
        _transfer(msg.sender, to, amount);
        return true;
    }

    function transferFrom(address from, address to, uint256 amount) external returns (bool) {
        uint256 current = _allowances[from][msg.sender];
        require(current >= amount, "ERC20: insufficient allowance");
        _allowances[from][msg.sender] = current - amount;
        _transfer(from, to, amount);
        return true;
    }
"""

_MINT_TO_DEPLOYER = """
        totalSupply = $supply * 10 ** decimals;
        _balances[msg.sender] = totalSupply;
        emit Transfer(address(0), msg.sender, totalSupply);"""

PLAIN = _HEADER + """
    constructor() {""" + _MINT_TO_DEPLOYER + """
    }
""" + _ERC20_API + """
    function _transfer(address from, address to, uint256 amount) internal {
        require(to != address(0), "ERC20: transfer to the zero address");
        uint256 balance = _balances[from];
        require(balance >= amount, "ERC20: transfer amount exceeds balance");
        _balances[from] = balance - amount;
        _balances[to] += amount;
        emit Transfer(from, to, amount);
    }
}
"""

FIXED_FEE = _HEADER + """
    // Deflationary: a fixed share of every transfer is burned.
    uint256 public constant BURN_FEE = $fee;

    constructor() {""" + _MINT_TO_DEPLOYER + """
    }
""" + _ERC20_API + """
    function _transfer(address from, address to, uint256 amount) internal {
        require(to != address(0), "ERC20: transfer to the zero address");
        uint256 balance = _balances[from];
        require(balance >= amount, "ERC20: transfer amount exceeds balance");
        uint256 burnAmount = amount * BURN_FEE / 100;
        _balances[from] = balance - amount;
        _balances[to] += amount - burnAmount;
        totalSupply -= burnAmount;
        emit Transfer(from, to, amount - burnAmount);
        emit Transfer(from, address(0), burnAmount);
    }
}
"""

OWNER_FEES = _HEADER + _OWNABLE + """
    uint256 public buyFee = $buy_fee;
    uint256 public sellFee = $sell_fee;
    address public marketingWallet;
    address public uniswapV2Pair;
    mapping(address => bool) private _isExcludedFromFee;

    constructor(address pair) {
        _owner = msg.sender;
        marketingWallet = msg.sender;
        uniswapV2Pair = pair;
        _isExcludedFromFee[msg.sender] = true;""" + _MINT_TO_DEPLOYER + """
    }
""" + _ERC20_API + """
    function setFees(uint256 newBuyFee, uint256 newSellFee) external onlyOwner {$fee_guard
        buyFee = newBuyFee;
        sellFee = newSellFee;
    }

    function setMarketingWallet(address wallet) external onlyOwner {
        marketingWallet = wallet;
    }

    function excludeFromFee(address account, bool excluded) external onlyOwner {
        _isExcludedFromFee[account] = excluded;
    }

    function _transfer(address from, address to, uint256 amount) internal {
        require(to != address(0), "ERC20: transfer to the zero address");
        uint256 balance = _balances[from];
        require(balance >= amount, "ERC20: transfer amount exceeds balance");

        uint256 fee = 0;
        if (!_isExcludedFromFee[from] && !_isExcludedFromFee[to]) {
            if (from == uniswapV2Pair) {
                fee = amount * buyFee / 100;
            } else if (to == uniswapV2Pair) {
                fee = amount * sellFee / 100;
            }
        }

        _balances[from] = balance - amount;
        _balances[to] += amount - fee;
        if (fee > 0) {
            _balances[marketingWallet] += fee;
            emit Transfer(from, marketingWallet, fee);
        }
        emit Transfer(from, to, amount - fee);
    }
}
"""

LAUNCH_TRAP = _HEADER + _OWNABLE + """
    uint256 public buyFee = $buy_fee;
    uint256 public sellFee = $buy_fee;
    uint256 public launchTime;
    bool public tradingEnabled;
    address public uniswapV2Pair;
    mapping(address => bool) public isBlacklisted;

    constructor() {
        _owner = msg.sender;""" + _MINT_TO_DEPLOYER + """
    }
""" + _ERC20_API + """
    function enableTrading(address pair) external onlyOwner {
        uniswapV2Pair = pair;
        tradingEnabled = true;
        launchTime = block.timestamp;
    }

    function setBlacklist(address account, bool flagged) external onlyOwner {
        isBlacklisted[account] = flagged;
    }

    function _currentFee(bool isSell) internal view returns (uint256) {
        if (block.timestamp < launchTime + $window) {
            return 99;
        }
        return isSell ? sellFee : buyFee;
    }

    function _transfer(address from, address to, uint256 amount) internal {
        require(!isBlacklisted[from] && !isBlacklisted[to], "Blacklisted");
        require(tradingEnabled || from == _owner, "Trading not enabled");
        uint256 balance = _balances[from];
        require(balance >= amount, "ERC20: transfer amount exceeds balance");

        uint256 fee = 0;
        if (from == uniswapV2Pair) {
            fee = amount * _currentFee(false) / 100;
        } else if (to == uniswapV2Pair) {
            fee = amount * _currentFee(true) / 100;
        }

        _balances[from] = balance - amount;
        _balances[to] += amount - fee;
        _balances[_owner] += fee;
        emit Transfer(from, to, amount - fee);
    }
}
"""

REFLECTION_TRAP = """// SPDX-License-Identifier: MIT
pragma solidity ^0.8.19;

contract $contract {
    string public constant name = "$display";
    string public constant symbol = "$symbol";
    uint8 public constant decimals = 9;

    uint256 private constant MAX = ~uint256(0);
    uint256 private _tTotal = $supply * 10 ** 9;
    uint256 private _rTotal = (MAX - (MAX % _tTotal));

    mapping(address => uint256) private _rOwned;
    mapping(address => uint256) private _tOwned;
    mapping(address => mapping(address => uint256)) private _allowances;
    mapping(address => bool) private _isExcludedFromFee;

    uint256 public _taxFee = $fee;
    uint256 private _previousTaxFee = _taxFee;

    event Transfer(address indexed from, address indexed to, uint256 value);
    event Approval(address indexed holder, address indexed spender, uint256 value);
""" + _OWNABLE + """
    constructor() {
        _owner = msg.sender;
        _rOwned[msg.sender] = _rTotal;
        _isExcludedFromFee[msg.sender] = true;
        emit Transfer(address(0), msg.sender, _tTotal);
    }

    function totalSupply() external view returns (uint256) {
        return _tTotal;
    }

    function balanceOf(address account) public view returns (uint256) {
        return tokenFromReflection(_rOwned[account]);
    }

    function approve(address spender, uint256 amount) external returns (bool) {
        _allowances[msg.sender][spender] = amount;
        emit Approval(msg.sender, spender, amount);
        return true;
    }

    function transfer(address to, uint256 amount) external returns (bool) {
        _transfer(msg.sender, to, amount);
        return true;
    }

    function tokenFromReflection(uint256 rAmount) public view returns (uint256) {
        return rAmount / _getRate();
    }

    function setTaxFeePercent(uint256 taxFee) external onlyOwner {
        _taxFee = taxFee;
    }

    function excludeFromFee(address account) public onlyOwner {
        _isExcludedFromFee[account] = true;
    }

    function removeAllFee() private {
        if (_taxFee == 0) return;
        _previousTaxFee = _taxFee;
        _taxFee = 0;
    }

    function restoreAllFee() private {
        _taxFee = _previousTaxFee;
    }

    function _transfer(address from, address to, uint256 amount) private {
        bool takeFee = !(_isExcludedFromFee[from] || _isExcludedFromFee[to]);
        _tokenTransfer(from, to, amount, takeFee);
    }

    function _tokenTransfer(address sender, address recipient, uint256 amount, bool takeFee) private {
        if (!takeFee) removeAllFee();
        (uint256 rAmount, uint256 rTransferAmount, uint256 rFee, uint256 tTransferAmount) = _getValues(amount);
        _rOwned[sender] -= rAmount;
        _rOwned[recipient] += rTransferAmount;
        _rTotal -= rFee;
        if (!takeFee) restoreAllFee();
        emit Transfer(sender, recipient, tTransferAmount);
    }

    function _getValues(uint256 tAmount) private view returns (uint256, uint256, uint256, uint256) {
        uint256 tFee = tAmount * _taxFee / 100;
        uint256 currentRate = _getRate();
        uint256 rAmount = tAmount * currentRate;
        uint256 rFee = tFee * currentRate;
        return (rAmount, rAmount - rFee, rFee, tAmount - tFee);
    }

    function _getRate() private view returns (uint256) {
        return _rTotal / _tTotal;
    }
}
"""


def _render(kind: str, rng: np.random.Generator, prefix: str, suffix: str) -> str:
    values: Dict[str, object] = {
        'contract': f"{prefix}{suffix}",
        'display': f"{prefix} {suffix}",
        'symbol': (prefix[:3] + suffix[:1]).upper(),
        'supply': int(rng.choice([1_000_000, 100_000_000, 1_000_000_000, 420_690_000_000])),
    }

    if kind == 'plain':
        return Template(PLAIN).substitute(values)

    if kind == 'fixed_fee':
        values['fee'] = int(rng.integers(1, 4))
        return Template(FIXED_FEE).substitute(values)

    if kind in ('capped_fee', 'uncapped_fee', 'sell_trap'):
        buy_fee = int(rng.integers(2, 6))
        values['buy_fee'] = buy_fee
        values['sell_fee'] = 99 if kind == 'sell_trap' else buy_fee + int(rng.integers(0, 3))
        if kind == 'uncapped_fee':
            values['fee_guard'] = ''
        else:
            cap = int(rng.choice([15, 20, 25]))
            values['fee_guard'] = (
                f'\n        require(newBuyFee + newSellFee <= {cap}, "Fees too high");'
            )
        return Template(OWNER_FEES).substitute(values)

    if kind == 'launch_trap':
        values['buy_fee'] = int(rng.integers(2, 6))
        values['window'] = str(rng.choice(['5 minutes', '1 hours', '1 days']))
        return Template(LAUNCH_TRAP).substitute(values)

    if kind == 'reflection_trap':
        values['fee'] = int(rng.integers(2, 6))
        return Template(REFLECTION_TRAP).substitute(values)

    raise ValueError(f"Unknown contract kind: {kind}")


def generate_contract(kind: str, seed: int = 0) -> ContractRecord:
    """Generate one contract of the given kind."""
    rng = np.random.default_rng(seed)
    return _generate(kind, rng, 0)


def _generate(kind: str, rng: np.random.Generator, index: int) -> ContractRecord:
    prefix = str(rng.choice(_PREFIXES))
    suffix = str(rng.choice(_SUFFIXES))
    address = '0x' + rng.bytes(20).hex()
    return ContractRecord(
        address=address,
        name=f"{prefix}{suffix}_{index:04d}",
        code=_render(kind, rng, prefix, suffix),
        label=KIND_LABELS[kind],
    )


def generate_corpus(n: int = 200, seed: int = 42) -> List[ContractRecord]:
    """
    Generate ``n`` labeled contracts.

    The first contracts cover every kind once, so any corpus with
    ``n >= len(KIND_LABELS)`` contains both safe and abusive examples. The
    output is identical for identical ``(n, seed)``.
    """
    if n < 1:
        raise ValueError("n must be positive")

    rng = np.random.default_rng(seed)
    kinds = list(KIND_WEIGHTS)
    weights = np.array([KIND_WEIGHTS[k] for k in kinds])
    weights = weights / weights.sum()

    sequence = kinds[:n] + [str(k) for k in rng.choice(kinds, size=max(0, n - len(kinds)), p=weights)]
    records = [_generate(kind, rng, i) for i, kind in enumerate(sequence)]

    logger.info(f"Generated {len(records)} synthetic contracts (seed={seed})")
    return records


def write_corpus(records: List[ContractRecord], output_dir: Union[str, Path]) -> List[Path]:
    """Write records as JSON files under ``output_dir/<label>/``."""
    output_dir = Path(output_dir)
    written = []
    for record in records:
        target_dir = output_dir / (record.label or 'unlabeled')
        target_dir.mkdir(parents=True, exist_ok=True)
        path = target_dir / f"{record.name}.json"
        with open(path, 'w') as f:
            json.dump({
                'address': record.address,
                'name': record.name,
                'code': record.code,
                'label': record.label,
            }, f, indent=2)
        written.append(path)

    logger.info(f"Wrote {len(written)} contracts to {output_dir}")
    return written
