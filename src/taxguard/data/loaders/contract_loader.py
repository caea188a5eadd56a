"""
Contract Source Loader

Loads token contract source code for analysis and training from local
files, labeled directories, CSV manifests and the Etherscan
``getsourcecode`` API.
"""

import asyncio
import json
import logging
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Dict, List, Optional, Union

import aiohttp
import pandas as pd

from taxguard.data.preprocessing.solidity_source import flatten_etherscan_source

logger = logging.getLogger(__name__)

SOURCE_SUFFIXES = ('.sol', '.json')

# Directory names that imply a label for the records below them.
DIRECTORY_LABELS = {
    'safe': 'safe',
    'legit': 'safe',
    'suspicious': 'suspicious',
    'scams': 'tax_abuse_candidate',
    'tax_abuse': 'tax_abuse_candidate',
    'tax_abuse_candidate': 'tax_abuse_candidate',
}


class ContractSourceError(ValueError):
    """Raised when contract input cannot be turned into source code."""


@dataclass
class ContractRecord:
    """Token contract source with optional label."""
    address: str
    name: str
    code: str
    label: Optional[str] = None
    source_path: Optional[str] = None

    @property
    def contract_id(self) -> str:
        return self.address or self.name

    def to_dict(self) -> Dict[str, Optional[str]]:
        return asdict(self)


def _record_from_mapping(data: Dict, path: Path) -> ContractRecord:
    code = data.get('code') or data.get('source') or data.get('SourceCode')
    if not code:
        raise ContractSourceError(f"{path}: JSON record has no 'code' field")
    return ContractRecord(
        address=str(data.get('address', '')),
        name=str(data.get('name') or data.get('ContractName') or path.stem),
        code=flatten_etherscan_source(code),
        label=data.get('label'),
        source_path=str(path),
    )


def load_contract_file(path: Union[str, Path]) -> List[ContractRecord]:
    """
    Load one source file.

    ``.sol`` files become a single record named after the file; ``.json``
    files may hold one record object or a list of them.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Contract file not found: {path}")
    if not path.is_file():
        raise ContractSourceError(f"{path}: not a regular file")

    text = path.read_text(encoding='utf-8', errors='replace')

    if path.suffix == '.sol':
        return [ContractRecord(address='', name=path.stem, code=text, source_path=str(path))]

    if path.suffix == '.json':
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ContractSourceError(f"{path}: invalid JSON ({e})") from e
        if isinstance(data, list):
            return [_record_from_mapping(item, path) for item in data]
        if isinstance(data, dict):
            return [_record_from_mapping(data, path)]
        raise ContractSourceError(f"{path}: expected a JSON object or list")

    raise ContractSourceError(f"{path}: unsupported file type {path.suffix!r}")


def load_contract_dir(path: Union[str, Path], recursive: bool = True) -> List[ContractRecord]:
    """
    Load every ``.sol``/``.json`` file below ``path`` in sorted order.

    A parent directory named like ``safe``, ``suspicious`` or ``scams``
    supplies the label for records that carry none.
    """
    root = Path(path)
    if not root.is_dir():
        raise FileNotFoundError(f"Contract directory not found: {root}")

    pattern = '**/*' if recursive else '*'
    records = []
    for file_path in sorted(root.glob(pattern)):
        if not file_path.is_file() or file_path.suffix not in SOURCE_SUFFIXES:
            continue
        for record in load_contract_file(file_path):
            if record.label is None:
                record.label = _label_from_path(file_path.relative_to(root))
            records.append(record)

    logger.info(f"Loaded {len(records)} contracts from {root}")
    return records


def _label_from_path(relative: Path) -> Optional[str]:
    for part in reversed(relative.parts[:-1]):
        label = DIRECTORY_LABELS.get(part.lower())
        if label:
            return label
    return None


def load_paths(paths: List[Union[str, Path]]) -> List[ContractRecord]:
    """Load a mix of files and directories."""
    records = []
    for path in paths:
        path = Path(path)
        if path.is_dir():
            records.extend(load_contract_dir(path))
        else:
            records.extend(load_contract_file(path))
    return records


def load_labeled_csv(path: Union[str, Path]) -> List[ContractRecord]:
    """
    Load a CSV manifest.

    Required columns: ``label`` and either ``code`` (inline source) or
    ``path`` (relative to the CSV). Optional: ``address``, ``name``.
    """
    path = Path(path)
    frame = pd.read_csv(path, dtype=str, keep_default_na=False)

    if 'label' not in frame.columns:
        raise ContractSourceError(f"{path}: missing 'label' column")
    if 'code' not in frame.columns and 'path' not in frame.columns:
        raise ContractSourceError(f"{path}: needs a 'code' or 'path' column")

    records = []
    for _, row in frame.iterrows():
        code = row.get('code', '')
        source_path = None
        if not code:
            if not row.get('path'):
                raise ContractSourceError(f"{path}: row {row.name} has neither code nor path")
            source_file = (path.parent / row['path']).resolve()
            if not source_file.exists():
                raise ContractSourceError(f"{path}: source file not found: {row['path']}")
            code = source_file.read_text(encoding='utf-8', errors='replace')
            source_path = str(source_file)
        records.append(ContractRecord(
            address=row.get('address', ''),
            name=row.get('name', '') or (Path(row['path']).stem if row.get('path') else ''),
            code=code,
            label=row['label'] or None,
            source_path=source_path,
        ))

    logger.info(f"Loaded {len(records)} labeled contracts from {path}")
    return records


def parse_getsourcecode_response(address: str, payload: Dict) -> Optional[ContractRecord]:
    """
    Turn an Etherscan ``getsourcecode`` response into a record.

    Returns None for unverified contracts; raises ContractSourceError when the
    API reports an error.
    """
    if str(payload.get('status')) != '1':
        message = payload.get('result') or payload.get('message') or 'unknown error'
        raise ContractSourceError(f"Etherscan error for {address}: {message}")

    results = payload.get('result') or []
    if not results:
        return None

    entry = results[0]
    source = entry.get('SourceCode', '')
    if not source:
        logger.warning(f"Contract {address} is not verified")
        return None

    return ContractRecord(
        address=address,
        name=entry.get('ContractName') or address,
        code=flatten_etherscan_source(source),
    )


class EtherscanLoader:
    """
    Async loader for verified contract source via an Etherscan-compatible API.
    """

    def __init__(self,
                 api_key: Optional[str],
                 base_url: str = 'https://api.etherscan.io/api',
                 timeout: float = 30.0,
                 max_concurrency: int = 4):
        """Initialize Etherscan loader."""
        self.api_key = api_key
        self.base_url = base_url
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.max_concurrency = max_concurrency
        self.logger = logging.getLogger(__name__)

    async def fetch_source(self,
                           address: str,
                           session: Optional[aiohttp.ClientSession] = None) -> Optional[ContractRecord]:
        """Fetch and flatten the verified source for ``address``."""
        params = {
            'module': 'contract',
            'action': 'getsourcecode',
            'address': address,
        }
        if self.api_key:
            params['apikey'] = self.api_key

        own_session = session is None
        if own_session:
            session = aiohttp.ClientSession(timeout=self.timeout)

        try:
            async with session.get(self.base_url, params=params) as response:
                if response.status != 200:
                    raise ContractSourceError(
                        f"Etherscan returned HTTP {response.status} for {address}"
                    )
                payload = await response.json(content_type=None)
            return parse_getsourcecode_response(address, payload)

        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            self.logger.error(f"Source fetch failed for {address}: {e!r}")
            raise ContractSourceError(f"Could not reach Etherscan for {address}: {e!r}") from e

        finally:
            if own_session:
                await session.close()

    async def fetch_many(self, addresses: List[str]) -> List[ContractRecord]:
        """Fetch several addresses; unverified contracts are skipped."""
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async with aiohttp.ClientSession(timeout=self.timeout) as session:
            async def _fetch(address: str) -> Optional[ContractRecord]:
                async with semaphore:
                    return await self.fetch_source(address, session=session)

            results = await asyncio.gather(*(_fetch(a) for a in addresses))

        return [record for record in results if record is not None]
