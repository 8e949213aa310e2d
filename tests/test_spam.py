import pytest

from x402_settlement.core.spam import (
    SpamFlag,
    SpamRisk,
    TokenProfile,
    detect_spam_token,
    detect_spam_tokens,
)


def test_known_symbol_is_clean_even_with_odd_metadata():
    report = detect_spam_token(TokenProfile(mint="m1", name="Free airdrop", symbol="usdc", usd_value=0.0))

    assert not report.is_spam
    assert report.risk is SpamRisk.LOW
    assert report.confidence == 0
    assert report.flags == ()


def test_well_formed_token_has_no_flags():
    report = detect_spam_token(
        TokenProfile(mint="m1", name="Project Token", symbol="PRJ", decimals=6, ui_amount=12.5, usd_value=40.0)
    )

    assert not report.is_spam
    assert report.flags == ()
    assert report.risk is SpamRisk.LOW


def test_freeze_authority_is_critical():
    report = detect_spam_token(
        TokenProfile(mint="m1", name="Project Token", symbol="PRJ", freeze_authority="Auth111")
    )

    assert report.risk is SpamRisk.CRITICAL
    assert report.confidence >= 90
    assert report.flags == (SpamFlag.FREEZE_AUTHORITY,)


def test_scam_keywords_raise_risk_to_high():
    report = detect_spam_token(TokenProfile(mint="m1", name="Claim your FREE reward", symbol="CLM"))

    assert report.risk is SpamRisk.HIGH
    assert report.confidence >= 70
    assert set(report.keywords) == {"claim", "free", "reward"}
    assert SpamFlag.SCAM_KEYWORDS in report.flags


def test_two_flags_mark_a_token_as_spam():
    report = detect_spam_token(
        TokenProfile(mint="m1", name="Project Token", symbol="PRJ", decimals=12, ui_amount=0)
    )

    assert report.is_spam
    assert report.risk is SpamRisk.MEDIUM
    assert report.confidence == 50
    assert set(report.flags) == {SpamFlag.UNUSUAL_DECIMALS, SpamFlag.ZERO_BALANCE}


def test_single_flag_is_not_spam():
    report = detect_spam_token(TokenProfile(mint="m1", name="Project Token", symbol="PRJ", usd_value=0.001))

    assert not report.is_spam
    assert report.risk is SpamRisk.LOW
    assert report.confidence == 30
    assert report.flags == (SpamFlag.DUST_VALUE,)


@pytest.mark.parametrize(
    "symbol, flag",
    [
        ("AVERYLONGSYMBOL", SpamFlag.LONG_SYMBOL),
        ("PR$J", SpamFlag.SYMBOL_CHARACTERS),
    ],
)
def test_symbol_shape_is_flagged(symbol, flag):
    report = detect_spam_token(TokenProfile(mint="m1", name="Project Token", symbol=symbol))

    assert flag in report.flags


def test_missing_metadata_with_dust_is_spam():
    report = detect_spam_token(TokenProfile(mint="m1", usd_value=0.0))

    assert report.is_spam
    assert set(report.flags) == {SpamFlag.MISSING_METADATA, SpamFlag.DUST_VALUE}


def test_batch_screening_is_keyed_by_mint():
    reports = detect_spam_tokens(
        [
            TokenProfile(mint="good", name="Project Token", symbol="PRJ"),
            TokenProfile(mint="bad", name="Wallet support bonus", symbol="W$", ui_amount=0),
        ]
    )

    assert set(reports) == {"good", "bad"}
    assert not reports["good"].is_spam
    assert reports["bad"].is_spam
    assert reports["bad"].risk is SpamRisk.HIGH
