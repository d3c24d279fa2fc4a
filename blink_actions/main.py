from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path
from typing import Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from solana.rpc.api import Client as SolanaClient
from solders.hash import Hash
from solders.pubkey import Pubkey

from blink_actions.errors import ActionError, AnchorUnavailable, InternalError, InvalidInput
from blink_actions.tx_builder import (
    build_deposit_sol_ix,
    instruction_to_dict,
    to_pubkey,
    vault_data_pda,
    vault_pda,
    versioned_tx_b64,
)

DEFAULT_PROGRAM_ID = "GVh92ct6ouJXFjxx7rvPXGidjWhKJVtnBjTkywhpCuA"


class Settings(BaseSettings):
    solana_rpc_url: str = "https://api.devnet.solana.com"
    host: str = "0.0.0.0"
    port: int = 3001
    program_id: str = DEFAULT_PROGRAM_ID
    blockchain_id: str = "solana:mainnet"  # CAIP-2
    action_version: str = "2.4"
    action_path: str = "/actions/participate"
    rpc_timeout_seconds: float = 10.0
    static_dir: str = "public"
    action_title: str = "Trade dot fun"
    action_label: str = "0.1 SOL entrance fee"
    action_description: str = "Join the ultimate trading competition"
    action_icon: str = "action_img.png"

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore", frozen=True)

    @field_validator("program_id")
    @classmethod
    def _valid_program_id(cls, value: str) -> str:
        try:
            Pubkey.from_string(value)
        except Exception as exc:  # noqa: BLE001
            raise ValueError(f"PROGRAM_ID is not a valid pubkey: {exc}") from exc
        return value

    @property
    def program_pubkey(self) -> Pubkey:
        return Pubkey.from_string(self.program_id)


@lru_cache
def get_settings() -> Settings:
    return Settings()


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("blink")


class ActionPostRequest(BaseModel):
    account: Optional[str] = None


class RpcBlockhashSource:
    """Fetches a fresh recent blockhash per call; nothing is cached between requests."""

    def __init__(self, rpc_url: str, timeout: float = 10.0):
        self.rpc_url = rpc_url
        self.client = SolanaClient(rpc_url, timeout=timeout)

    def latest_blockhash(self) -> Hash:
        try:
            resp = self.client.get_latest_blockhash()
        except Exception as exc:  # noqa: BLE001
            raise AnchorUnavailable(f"getLatestBlockhash failed rpc={self.rpc_url}: {exc}") from exc
        value = getattr(resp, "value", None)
        if value is None:
            raise AnchorUnavailable(f"getLatestBlockhash returned no value rpc={self.rpc_url}: {resp}")
        return value.blockhash


def action_headers(settings: Settings) -> Dict[str, str]:
    return {
        "Access-Control-Allow-Origin": "*",
        "Access-Control-Allow-Methods": "OPTIONS, GET, POST",
        "Access-Control-Allow-Headers": "Content-Type",
        "x-blockchain-ids": settings.blockchain_id,
        "x-action-version": settings.action_version,
    }


def describe_action(settings: Settings, base_url: str) -> dict:
    return {
        "type": "action",
        "icon": f"{base_url.rstrip('/')}/{settings.action_icon}",
        "label": settings.action_label,
        "title": settings.action_title,
        "description": settings.action_description,
        "links": {
            "actions": [{"type": "transaction", "label": "participate", "href": settings.action_path}],
        },
    }


def parse_account(account: Optional[str]) -> Pubkey:
    if not account:
        raise InvalidInput("missing account")
    try:
        return to_pubkey(account)
    except Exception as exc:  # noqa: BLE001
        raise InvalidInput(f"invalid account {account!r}: {exc}") from exc


def prepare_action(account: Optional[str], settings: Settings, blockhash_source) -> str:
    """Build the unsigned deposit_sol transaction for `account` and return it base64-encoded.

    The account is validated before any derivation or RPC work. Failures past
    validation are reported as InternalError (or a subclass) with the cause chained.
    """
    payer = parse_account(account)
    try:
        program_id = settings.program_pubkey
        vault = vault_pda(program_id)
        vault_data = vault_data_pda(program_id)
        ix = build_deposit_sol_ix(program_id, payer, vault, vault_data)
        blockhash = blockhash_source.latest_blockhash()
        tx_b64 = versioned_tx_b64(payer, blockhash, [ix])
    except InternalError:
        raise
    except Exception as exc:  # noqa: BLE001
        raise InternalError(f"deposit_sol build failed payer={payer}: {exc}") from exc
    logger.info("deposit_tx_created payer=%s blockhash=%s", payer, blockhash)
    logger.debug("deposit_ix %s", instruction_to_dict(ix))
    return tx_b64


def request_base_url(request: Request) -> str:
    host = request.headers.get("host") or request.url.netloc
    return f"{request.url.scheme}://{host}"


def create_app(settings: Optional[Settings] = None, blockhash_source=None) -> FastAPI:
    settings = settings or get_settings()
    if blockhash_source is None:
        blockhash_source = RpcBlockhashSource(settings.solana_rpc_url, timeout=settings.rpc_timeout_seconds)
    headers = action_headers(settings)
    logger.info("solana_rpc_url=%s program_id=%s", settings.solana_rpc_url, settings.program_id)

    app = FastAPI(title="Blink Actions API", version="0.1.0")

    @app.exception_handler(ActionError)
    async def action_error_handler(_request: Request, exc: ActionError):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.public_message}, headers=headers)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(_request: Request, exc: RequestValidationError):
        logger.warning("invalid_request_body errors=%s", exc.errors())
        return JSONResponse(status_code=400, content={"error": InvalidInput.public_message}, headers=headers)

    @app.get("/health")
    def health():
        return {"status": "ok", "program_id": settings.program_id}

    @app.options(settings.action_path)
    def action_options():
        return Response(status_code=204, headers=headers)

    @app.get(settings.action_path)
    def action_metadata(request: Request):
        return JSONResponse(describe_action(settings, request_base_url(request)), headers=headers)

    @app.post(settings.action_path)
    def action_transaction(req: ActionPostRequest):
        try:
            tx_b64 = prepare_action(req.account, settings, blockhash_source)
        except InvalidInput as exc:
            logger.warning("invalid_account error=%s", exc)
            raise
        except ActionError as exc:
            logger.error("deposit_tx_failed account=%s error=%s", req.account, exc, exc_info=True)
            raise
        return JSONResponse({"type": "transaction", "transaction": tx_b64}, headers=headers)

    static_dir = Path(settings.static_dir)
    if static_dir.is_dir():
        app.mount("/", StaticFiles(directory=static_dir), name="static")
    else:
        logger.info("static_dir_missing path=%s", static_dir)

    return app


app = create_app()


def run() -> None:
    import uvicorn

    settings = get_settings()
    logger.info("Blink server running on port %s", settings.port)
    uvicorn.run("blink_actions.main:app", host=settings.host, port=settings.port)


if __name__ == "__main__":
    run()
