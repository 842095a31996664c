#!/usr/bin/env python3
from __future__ import annotations

import os
import sys

from urllib.request import urlopen
from urllib.error import URLError


def main() -> int:
    base_url = os.getenv("ASKDOC_API_URL", "http://localhost:8000").rstrip("/")
    try:
        for path in ("/healthz", "/livez"):
            with urlopen(f"{base_url}{path}", timeout=5) as r:
                print(f"{path}:", r.read().decode("utf-8"))
    except (URLError, OSError) as exc:
        print(f"Smoke check failed: {exc}", file=sys.stderr)
        return 1
    print("Smoke check passed.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
