"""
Tax Abuse Model Server

FastAPI server exposing static tax abuse analysis for token contract
source, checklist lookup and model lifecycle endpoints.
"""

import logging
import os
from datetime import datetime
from typing import Any, Dict, List, Optional

import uvicorn
from fastapi import BackgroundTasks, FastAPI, HTTPException
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field, field_validator

from taxguard import __version__
from taxguard.analyzer import TaxAbuseAnalyzer
from taxguard.config import DetectorConfig, load_config
from taxguard.data.loaders.contract_loader import ContractSourceError, EtherscanLoader
from taxguard.models.security.audit_checklist import DEFAULT_CHECKLIST

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Token Tax Abuse Analysis Server",
    description="Static detection of abusive fee logic in ERC-20 token contracts",
    version=__version__,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

config: Optional[DetectorConfig] = None
analyzer: Optional[TaxAbuseAnalyzer] = None


class AnalyzeRequest(BaseModel):
    code: str = Field(..., description="Solidity source of the token contract")
    contract_id: Optional[str] = Field(None, description="Address or name used in the report")

    @field_validator('code')
    @classmethod
    def code_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("code must not be empty")
        return value


class BatchAnalyzeRequest(BaseModel):
    contracts: List[AnalyzeRequest] = Field(..., min_length=1, description="Contracts to analyze")


class AddressRequest(BaseModel):
    address: str = Field(..., pattern=r'^0x[0-9a-fA-F]{40}$', description="Verified contract address")


class HealthResponse(BaseModel):
    status: str
    model_loaded: bool
    model_type: str
    timestamp: datetime


def get_config() -> DetectorConfig:
    global config
    if config is None:
        config = load_config()
    return config


def get_analyzer() -> TaxAbuseAnalyzer:
    """Analyzer for the current config, created on first use."""
    global analyzer
    if analyzer is None:
        analyzer = TaxAbuseAnalyzer(get_config())
    return analyzer


def reload_analyzer() -> None:
    global analyzer
    analyzer = TaxAbuseAnalyzer(get_config())
    logger.info(f"Analyzer reloaded (model: {analyzer.model_info()['model_type']})")


def _analyze(request: AnalyzeRequest, index: int = 0) -> Dict[str, Any]:
    current = get_analyzer()
    size = len(request.code.encode('utf-8'))
    if size > current.config.max_source_bytes:
        raise HTTPException(
            status_code=413,
            detail=f"Source is {size} bytes, limit is {current.config.max_source_bytes}",
        )

    contract_id = request.contract_id or f"contract_{index}"
    try:
        return current.analyze_source(request.code, contract_id).to_dict()
    except Exception as e:
        logger.error(f"Analysis failed for {contract_id}: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@app.on_event("startup")
async def startup_event():
    """Load the model on startup."""
    logger.info("Starting tax abuse analysis server...")

    try:
        info = get_analyzer().model_info()
        logger.info(f"Server started with model: {info['model_type']}")
    except Exception as e:
        logger.error(f"Failed to start server: {e}")
        raise


@app.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    current = get_analyzer()
    return HealthResponse(
        status="healthy",
        model_loaded=current.using_model,
        model_type=current.model_info()['model_type'],
        timestamp=datetime.now(),
    )


@app.get("/models")
async def list_models():
    """Metadata of the model used for scoring."""
    return {
        'model': get_analyzer().model_info(),
        'timestamp': datetime.now(),
    }


@app.post("/analyze")
def analyze_contract(request: AnalyzeRequest):
    """Analyze one contract source."""
    return _analyze(request)


@app.post("/analyze/batch")
def analyze_batch(request: BatchAnalyzeRequest):
    """Analyze several contract sources."""
    return [_analyze(item, index) for index, item in enumerate(request.contracts)]


@app.post("/analyze/address")
async def analyze_address(request: AddressRequest):
    """Fetch verified source from Etherscan and analyze it."""
    current_config = get_config()
    loader = EtherscanLoader(current_config.etherscan_api_key, current_config.etherscan_api_url)

    try:
        record = await loader.fetch_source(request.address)
    except ContractSourceError as e:
        logger.error(f"Source fetch failed for {request.address}: {e}")
        raise HTTPException(status_code=502, detail=str(e))

    if record is None:
        raise HTTPException(status_code=404, detail=f"No verified source for {request.address}")

    return await run_in_threadpool(_analyze, AnalyzeRequest(code=record.code, contract_id=record.address))


@app.get("/checklist")
async def get_checklist():
    """The audit checklist items."""
    return {
        'items': [item.to_dict() for item in DEFAULT_CHECKLIST],
        'count': len(DEFAULT_CHECKLIST),
    }


@app.post("/reload_models")
async def reload_models(background_tasks: BackgroundTasks):
    """Reload the model in the background."""
    background_tasks.add_task(reload_analyzer)
    return {"message": "Model reload initiated", "timestamp": datetime.now()}


def run(host: str = "0.0.0.0", port: Optional[int] = None) -> None:
    logging.basicConfig(level=get_config().logging_level)
    uvicorn.run(
        app,
        host=host,
        port=port or int(os.getenv("PORT", 8000)),
        reload=False,
        workers=1,
    )


if __name__ == "__main__":
    run()
