#!/usr/bin/env python3
"""
Generate the RSA key pairs the service and its trusted senders use.

Paths are read from the environment (or a .env file), the same variables the
service itself loads:

  SESSION_PUBLIC_KEY_PATH / SESSION_PRIVATE_KEY_PATH
  WEBHOOK_PUBLIC_KEY_PATH / WEBHOOK_PRIVATE_KEY_PATH
  COGNITO_PUBLIC_KEY_PATH / COGNITO_PRIVATE_KEY_PATH  (the trigger Lambda's key)

Usage:
  python scripts/make_keys.py --env-file .env.test
"""

from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from dotenv import load_dotenv


KEY_PAIRS = ("SESSION", "WEBHOOK", "COGNITO")


def write_key_pair(public_path: str, private_path: str, key_size: int = 2048) -> None:
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=key_size)
    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
    public_pem = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    for path, data in ((private_path, private_pem), (public_path, public_pem)):
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        Path(path).write_bytes(data)


def main() -> int:
    p = argparse.ArgumentParser()
    p.add_argument("--env-file", default=".env")
    p.add_argument("--key-size", type=int, default=2048)
    args = p.parse_args()

    load_dotenv(args.env_file, override=True)

    failed = False
    for name in KEY_PAIRS:
        public_path = os.getenv(f"{name}_PUBLIC_KEY_PATH")
        private_path = os.getenv(f"{name}_PRIVATE_KEY_PATH")
        if not public_path or not private_path:
            print(f"[keys] skipping {name}: {name}_PUBLIC_KEY_PATH/{name}_PRIVATE_KEY_PATH not set", file=sys.stderr)
            failed = True
            continue
        write_key_pair(public_path, private_path, args.key_size)
        print(f"[keys] wrote {name.lower()} key pair -> {public_path}, {private_path}", flush=True)

    return 1 if failed else 0


if __name__ == "__main__":
    raise SystemExit(main())
