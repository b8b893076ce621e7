from datetime import datetime, timedelta

from eth_account.messages import encode_defunct

TEST_SECRET = "test-secret-key-for-testing-only"

# Test wallets (DO NOT use in production)
ALICE_KEY = "0x4c0883a69102937d6231471b5dbb6204fe512961708279f8d5e7f5e8b2e4e8b7"
BOB_KEY = "0x5c0883a69102937d6231471b5dbb6204fe512961708279f8d5e7f5e8b2e4e8b8"


class FrozenClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


def sign(account, message: str) -> str:
    """personal_sign a message and return a 0x-prefixed hex signature."""
    signature = account.sign_message(encode_defunct(text=message)).signature.hex()
    return signature if signature.startswith("0x") else "0x" + signature
