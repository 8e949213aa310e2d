import pytest

from x402_settlement.core.errors import RpcErrorKind, RpcPermanent
from x402_settlement.core.ledger import (
    Commitment,
    LatestBlockhash,
    SignatureStatus,
    TransactionRecord,
)


def _transaction_payload(**meta_overrides):
    meta = {
        "err": None,
        "fee": 5000,
        "preBalances": [10_000, 0, 1],
        "postBalances": [4_000, 1_000, 1],
        "preTokenBalances": [],
        "postTokenBalances": [
            {
                "accountIndex": 1,
                "mint": "Mint111",
                "owner": "Owner111",
                "uiTokenAmount": {"amount": "50000", "decimals": 6, "uiAmount": None},
            }
        ],
        "loadedAddresses": None,
        "rewards": None,
        "returnData": None,
        "costUnits": None,
    }
    meta.update(meta_overrides)
    return {
        "slot": 77,
        "blockTime": None,
        "meta": meta,
        "transaction": {
            "signatures": ["SigA"],
            "message": {
                "accountKeys": [
                    {"pubkey": "Payer111", "signer": True, "writable": True},
                    {"pubkey": "Dest111", "signer": False, "writable": True},
                    "Ref111",
                ],
                "instructions": [{"programId": "Tokenkeg", "parsed": {"type": "transfer", "info": {}}}],
            },
        },
    }


def test_transaction_tolerates_null_legacy_fields():
    record = TransactionRecord.from_response(_transaction_payload(), commitment=Commitment.CONFIRMED)

    assert record.signature == "SigA"
    assert record.slot == 77
    assert record.block_time is None
    assert not record.failed
    assert record.account_addresses() == ("Payer111", "Dest111", "Ref111")
    assert record.account_keys[0].signer
    assert record.index_of("Ref111") == 2
    assert record.index_of("Nope") is None
    assert record.native_delta(1) == 1_000
    assert record.post_token_balances[0].amount == 50_000
    assert record.pre_token_balances == ()


def test_transaction_with_execution_error():
    record = TransactionRecord.from_response(
        _transaction_payload(err={"InstructionError": [0, {"Custom": 1}]})
    )
    assert record.failed


def test_transaction_missing_meta_is_malformed():
    payload = _transaction_payload()
    del payload["meta"]
    with pytest.raises(RpcPermanent) as info:
        TransactionRecord.from_response(payload)
    assert info.value.kind is RpcErrorKind.MALFORMED_RESPONSE


def test_status_without_confirmation_status_falls_back_to_confirmations():
    assert SignatureStatus.from_response({"slot": 1, "confirmations": None}).commitment is Commitment.FINALIZED
    assert SignatureStatus.from_response({"slot": 1, "confirmations": 3}).commitment is Commitment.CONFIRMED
    status = SignatureStatus.from_response({"slot": 1, "confirmations": 0, "confirmationStatus": "processed"})
    assert status.commitment is Commitment.PROCESSED


def test_commitment_ordering():
    assert Commitment.FINALIZED.at_least(Commitment.CONFIRMED)
    assert Commitment.CONFIRMED.at_least(Commitment.CONFIRMED)
    assert not Commitment.PROCESSED.at_least(Commitment.CONFIRMED)
    assert Commitment.parse("bogus") is None


def test_latest_blockhash():
    latest = LatestBlockhash.from_response(
        {"context": {"slot": 5}, "value": {"blockhash": "Hash111", "lastValidBlockHeight": 150}}
    )
    assert latest == LatestBlockhash("Hash111", 150)
    with pytest.raises(RpcPermanent):
        LatestBlockhash.from_response({"value": {"blockhash": "Hash111"}})
