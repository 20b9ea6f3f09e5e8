#!/usr/bin/env python3
"""Validate runtime configuration for pre-production/production deploys.

Examples:
  python backend/scripts/validate_runtime_config.py
  python backend/scripts/validate_runtime_config.py --require-billplz --require-bayarcash --pretty
"""

from __future__ import annotations

import argparse
import json
import os
import sys
from typing import Any

# Add backend/ to path when run as a script.
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.config import DEFAULT_ENCRYPTION_KEY, DEFAULT_JWT_SECRET, get_settings, is_local_env


def _validate_settings(
    *,
    require_billplz: bool,
    require_bayarcash: bool,
) -> tuple[list[str], dict[str, Any]]:
    settings = get_settings()
    local_env = is_local_env(settings.app_env)
    failures: list[str] = []

    if not local_env:
        if settings.jwt_secret == DEFAULT_JWT_SECRET:
            failures.append("JWT_SECRET must not use the default value outside local/dev/test")
        if settings.encryption_key == DEFAULT_ENCRYPTION_KEY:
            failures.append("ENCRYPTION_KEY must not use the default value outside local/dev/test")
        if settings.debug:
            failures.append("DEBUG=true is not allowed outside local/dev/test")
        if settings.woocommerce_allow_unsigned:
            failures.append("WOOCOMMERCE_ALLOW_UNSIGNED must be false outside local/dev/test")
        if not settings.public_base_url.startswith("https://"):
            failures.append("PUBLIC_BASE_URL must be https outside local/dev/test")

        # system_settings rows can override these at runtime; only the flags make them mandatory
        if require_billplz:
            if not settings.billplz_api_key.strip():
                failures.append("BILLPLZ_API_KEY is required when --require-billplz is set")
            if not settings.billplz_collection_id.strip():
                failures.append("BILLPLZ_COLLECTION_ID is required when --require-billplz is set")
        if require_bayarcash:
            if not settings.bayarcash_api_token.strip():
                failures.append("BAYARCASH_API_TOKEN is required when --require-bayarcash is set")
            if not settings.bayarcash_portal_key.strip():
                failures.append("BAYARCASH_PORTAL_KEY is required when --require-bayarcash is set")
            if not settings.bayarcash_api_secret_key.strip():
                failures.append("BAYARCASH_API_SECRET_KEY is required when --require-bayarcash is set")

    summary = {
        "status": "success" if not failures else "failed",
        "app_env": settings.app_env,
        "local_env": local_env,
        "require_billplz": bool(require_billplz),
        "require_bayarcash": bool(require_bayarcash),
        "failures": failures,
    }
    return failures, summary


def main() -> int:
    parser = argparse.ArgumentParser(description="Validate deployment runtime config")
    parser.add_argument(
        "--require-billplz",
        action="store_true",
        help="Require Billplz API key and collection in the environment",
    )
    parser.add_argument(
        "--require-bayarcash",
        action="store_true",
        help="Require BayarCash portal key, secret and API token in the environment",
    )
    parser.add_argument("--pretty", action="store_true", help="Pretty-print JSON output")
    args = parser.parse_args()

    try:
        failures, summary = _validate_settings(
            require_billplz=bool(args.require_billplz),
            require_bayarcash=bool(args.require_bayarcash),
        )
    except Exception as exc:  # noqa: BLE001
        summary = {
            "status": "failed",
            "error": str(exc),
            "require_billplz": bool(args.require_billplz),
            "require_bayarcash": bool(args.require_bayarcash),
        }
        failures = [str(exc)]

    if args.pretty:
        print(json.dumps(summary, indent=2, sort_keys=True))
    else:
        print(json.dumps(summary))

    return 0 if not failures else 1


if __name__ == "__main__":
    raise SystemExit(main())
