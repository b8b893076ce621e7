"""
Walk through the SIWE login flow against a running server.

    python scripts/siwe_login_demo.py [SERVER_URL]

Uses a fixed throwaway key; never point it at real funds.
"""
import os
import sys

import httpx
from eth_account import Account
from eth_account.messages import encode_defunct

SERVER_URL = os.environ.get("SERVER_URL", "http://localhost:8080")
TEST_PRIVATE_KEY = "0x0123456789012345678901234567890123456789012345678901234567890123"


def main(base_url: str) -> int:
    account = Account.from_key(TEST_PRIVATE_KEY)
    address = account.address.lower()
    api = f"{base_url.rstrip('/')}/api/v1"
    print(f"Test address: {address}")
    print(f"Server URL:   {base_url}")

    with httpx.Client(timeout=10.0) as client:
        r = client.get(f"{api}/health")
        print("health:", r.status_code, r.json())

        r = client.post(f"{api}/auth/nonce", json={"address": address})
        r.raise_for_status()
        challenge = r.json()
        print("\n--- message to sign ---")
        print(challenge["message"])
        print("-----------------------")

        signed = account.sign_message(encode_defunct(text=challenge["message"]))
        signature = signed.signature.hex()
        if not signature.startswith("0x"):
            signature = "0x" + signature

        r = client.post(f"{api}/auth/signin", json={"message": challenge["message"], "signature": signature})
        print("signin:", r.status_code, r.json())
        if r.status_code != 200:
            return 1
        token = r.json()["token"]

        # the same signed pair must not work twice
        r = client.post(f"{api}/auth/signin", json={"message": challenge["message"], "signature": signature})
        print("replay:", r.status_code, r.json())

        headers = {"Authorization": f"Bearer {token}"}
        r = client.get(f"{api}/auth/verify", headers=headers)
        print("verify:", r.status_code, r.json())

        r = client.post(f"{api}/auth/refresh", headers=headers)
        print("refresh:", r.status_code, r.json())

        r = client.post(f"{api}/auth/signout", headers=headers)
        print("signout:", r.status_code, r.json())
    return 0


if __name__ == "__main__":
    sys.exit(main(sys.argv[1] if len(sys.argv) > 1 else SERVER_URL))
