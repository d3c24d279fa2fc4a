import base64
import hashlib
from typing import List, Sequence

from solders.hash import Hash
from solders.instruction import AccountMeta, Instruction
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import VersionedTransaction

from blink_actions.errors import DerivationFailure

SYS_PROGRAM_ID = Pubkey.from_string("11111111111111111111111111111111")
VAULT_SEED = b"vault"
VAULT_DATA_SEED = b"vault_data"
MAX_SEED_LEN = 32


def sighash(name: str) -> bytes:
    return hashlib.sha256(f"global:{name}".encode()).digest()[:8]


DEPOSIT_SOL_DISCRIMINATOR = sighash("deposit_sol")


def to_pubkey(value: str) -> Pubkey:
    return Pubkey.from_string(value)


def derive_pda(program_id: Pubkey, seed: bytes) -> Pubkey:
    """Same search as find_program_address: first bump from 255 down whose address is off-curve."""
    if len(seed) > MAX_SEED_LEN:
        raise DerivationFailure(f"seed longer than {MAX_SEED_LEN} bytes: {seed!r}")
    for bump in range(255, -1, -1):
        try:
            return Pubkey.create_program_address([seed, bytes([bump])], program_id)
        except Exception:  # noqa: BLE001
            continue
    raise DerivationFailure(f"no off-curve program address for seed {seed!r}")


def vault_pda(program_id: Pubkey) -> Pubkey:
    return derive_pda(program_id, VAULT_SEED)


def vault_data_pda(program_id: Pubkey) -> Pubkey:
    return derive_pda(program_id, VAULT_DATA_SEED)


def build_deposit_sol_ix(
    program_id: Pubkey,
    payer: Pubkey,
    vault: Pubkey,
    vault_data: Pubkey,
    system_program: Pubkey = SYS_PROGRAM_ID,
    data: bytes = DEPOSIT_SOL_DISCRIMINATOR,
) -> Instruction:
    # Account order and flags must match the program's DepositSol accounts struct.
    accounts: List[AccountMeta] = [
        AccountMeta(pubkey=payer, is_signer=True, is_writable=True),
        AccountMeta(pubkey=vault, is_signer=False, is_writable=True),
        AccountMeta(pubkey=vault_data, is_signer=False, is_writable=True),
        AccountMeta(pubkey=system_program, is_signer=False, is_writable=False),
    ]
    return Instruction(program_id=program_id, data=data, accounts=accounts)


def instruction_to_dict(ix: Instruction) -> dict:
    return {
        "program_id": str(ix.program_id),
        "keys": [
            {"pubkey": str(meta.pubkey), "is_signer": meta.is_signer, "is_writable": meta.is_writable}
            for meta in ix.accounts
        ],
        "data": base64.b64encode(ix.data).decode(),
    }


def compile_unsigned_tx(payer: Pubkey, blockhash: Hash, ixs: Sequence[Instruction]) -> VersionedTransaction:
    """Compile a v0 message and wrap it with zeroed signature slots for the wallet to fill."""
    message = MessageV0.try_compile(payer, list(ixs), [], blockhash)
    signatures = [Signature.default()] * message.header.num_required_signatures
    return VersionedTransaction.populate(message, signatures)


def versioned_tx_b64(payer: Pubkey, blockhash: Hash, ixs: Sequence[Instruction]) -> str:
    return base64.b64encode(bytes(compile_unsigned_tx(payer, blockhash, ixs))).decode()
