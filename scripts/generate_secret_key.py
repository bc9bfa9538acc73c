#!/usr/bin/env python3
"""
Generate the JWT signing secret for the reference backend.
Appends JWT_SECRET_KEY to .env when run with --write, otherwise prints it.
"""

import secrets
import sys
from pathlib import Path

if __name__ == "__main__":
    line = f"JWT_SECRET_KEY={secrets.token_hex(32)}"

    if "--write" in sys.argv:
        env = Path(".env")
        existing = env.read_text() if env.exists() else ""
        if "JWT_SECRET_KEY=" in existing:
            print("ERROR: .env already defines JWT_SECRET_KEY; remove it first.", file=sys.stderr)
            sys.exit(1)
        with env.open("a") as fh:
            if existing and not existing.endswith("\n"):
                fh.write("\n")
            fh.write(line + "\n")
        print(f"[init] Wrote JWT_SECRET_KEY to {env.resolve()}")
    else:
        print(line)
        print("\nCopy the line above to your .env file (or rerun with --write).")
