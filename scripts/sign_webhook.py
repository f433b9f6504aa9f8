#!/usr/bin/env python3
"""
Sign a NOWPayments webhook payload for local testing.

Computes the x-nowpayments-sig header the gateway would send for a JSON file,
using NOWPAYMENTS_IPN_SECRET from the environment (or --secret).

Usage:
    python3 scripts/sign_webhook.py payload.json

    # Post it to a running service
    python3 scripts/sign_webhook.py payload.json --send --url http://localhost:8000
"""

import argparse
import json
import os
import sys
from pathlib import Path

import httpx

from license_billing.services.signature import canonicalize, parse_payload, sign_payload

WEBHOOK_PATH = "/api/webhooks/nowpayments"


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Sign a NOWPayments webhook payload")
    parser.add_argument("payload", type=Path, help="Path to the JSON payload")
    parser.add_argument(
        "--secret",
        default=os.environ.get("NOWPAYMENTS_IPN_SECRET", ""),
        help="IPN secret (defaults to NOWPAYMENTS_IPN_SECRET)",
    )
    parser.add_argument("--url", default="http://localhost:8000", help="Service base URL")
    parser.add_argument("--send", action="store_true", help="POST the signed payload")
    return parser.parse_args()


def main() -> int:
    args = parse_args()

    if not args.secret:
        print("Error: NOWPAYMENTS_IPN_SECRET is not set", file=sys.stderr)
        return 1

    if not args.payload.exists():
        print(f"Error: File not found: {args.payload}", file=sys.stderr)
        return 1

    payload = parse_payload(args.payload.read_bytes())
    if not isinstance(payload, dict):
        print("Error: payload must be a JSON object", file=sys.stderr)
        return 1

    signature = sign_payload(payload, args.secret)
    body = canonicalize(payload)
    endpoint = args.url.rstrip("/") + WEBHOOK_PATH

    print("Webhook payload:")
    print(json.dumps(payload, indent=2, sort_keys=True))
    print("\nSignature (x-nowpayments-sig header):")
    print(signature)

    if not args.send:
        print("\nExample curl command:")
        print(f"curl -X POST {endpoint} \\")
        print('  -H "Content-Type: application/json" \\')
        print(f'  -H "x-nowpayments-sig: {signature}" \\')
        print(f"  --data-binary @{args.payload}")
        return 0

    response = httpx.post(
        endpoint,
        content=body.encode("utf-8"),
        headers={"Content-Type": "application/json", "x-nowpayments-sig": signature},
        timeout=10.0,
    )
    print(f"\nHTTP {response.status_code}")
    print(response.text)
    return 0 if response.is_success else 1


if __name__ == "__main__":
    sys.exit(main())
