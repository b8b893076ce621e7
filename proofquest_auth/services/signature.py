from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from eth_account import Account
from eth_account.messages import encode_defunct

from proofquest_auth.core.errors import InvalidSignatureError
from proofquest_auth.services.siwe import SiweMessage, normalize_address, parse_siwe_message

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VerifiedChallenge:
    address: str
    nonce: str
    expiration_time: Optional[datetime]
    message: SiweMessage


def recover_address(message: str, signature: str) -> str:
    # SIWE uses EIP-191 personal_sign style. In web3.py:
    # encode_defunct(text=message) matches personal_sign.
    msg = encode_defunct(text=message)
    recovered = Account.recover_message(msg, signature=signature)
    return normalize_address(recovered)


def verify_siwe_signature(message: str, signature: str) -> VerifiedChallenge:
    """
    Recover the signer of a SIWE message and check it owns the embedded address.

    Every failure (unparseable message, malformed signature, recovery error,
    signer mismatch) is reported as InvalidSignatureError; the cause is only
    written to the debug log. Expiry and nonce state are not checked here.
    """
    try:
        parsed = parse_siwe_message(message)
        recovered = recover_address(message, signature)
    except Exception as err:
        logger.debug("SIWE verification failed: %r", err)
        raise InvalidSignatureError() from None

    if recovered != parsed.address:
        logger.debug("SIWE signer %s does not match message address %s", recovered, parsed.address)
        raise InvalidSignatureError()

    return VerifiedChallenge(
        address=parsed.address,
        nonce=parsed.nonce,
        expiration_time=parsed.expiration_time,
        message=parsed,
    )
