#!/usr/bin/env python3
"""Espera hasta que GET /api/health responda con db_ok. Uso: python scripts/wait_for_api_health.py [max_wait_seconds]"""
import os
import sys
import time

import httpx


def main():
    base = os.getenv("SMOKE_API_BASE", "http://localhost:8000").rstrip("/")
    max_wait = int(sys.argv[1]) if len(sys.argv) > 1 else 60
    deadline = time.monotonic() + max_wait
    while time.monotonic() < deadline:
        try:
            resp = httpx.get(f"{base}/api/health", timeout=5)
            if resp.status_code == 200 and resp.json().get("db_ok"):
                return 0
        except httpx.HTTPError:
            pass
        time.sleep(2)
    print(f"API sin respuesta saludable tras {max_wait}s: {base}", file=sys.stderr)
    return 1


if __name__ == "__main__":
    sys.exit(main())
