#!/usr/bin/env python3
"""
Generates the RSA key pair used by the Flow endpoint.

The public key is uploaded to the WhatsApp Business account; the private key
goes into WHATSAPP_FLOW_PRIVATE_KEY (printed base64-encoded so it fits in a
single-line environment variable).

Usage:
    python scripts/generate_flow_keys.py [--out-dir keys/]
"""

import argparse
import base64
import logging
from pathlib import Path

from flowgate.services.crypto_service import CryptoChannel

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def main():
    parser = argparse.ArgumentParser(description="Generate a WhatsApp Flow RSA key pair")
    parser.add_argument("--out-dir", type=Path, help="Write public.pem / private.pem into this directory")
    parser.add_argument("--key-size", type=int, default=2048)
    args = parser.parse_args()

    public_pem, private_pem = CryptoChannel.generate_key_pair(args.key_size)

    if args.out_dir:
        args.out_dir.mkdir(parents=True, exist_ok=True)
        (args.out_dir / "public.pem").write_text(public_pem)
        private_path = args.out_dir / "private.pem"
        private_path.write_text(private_pem)
        private_path.chmod(0o600)
        logger.info(f"Keys written to {args.out_dir}")

    print(public_pem)
    print("WHATSAPP_FLOW_PRIVATE_KEY=" + base64.b64encode(private_pem.encode("utf-8")).decode("utf-8"))


if __name__ == "__main__":
    main()
