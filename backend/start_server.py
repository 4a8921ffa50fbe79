#!/usr/bin/env python3
"""
Run the inventory lending API with uvicorn from any working directory.

HOST / PORT come from the environment (the hosting platform injects PORT).
"""
import os
import sys
from pathlib import Path

BACKEND_DIR = Path(__file__).resolve().parent


def main() -> int:
    # `core`, `common` and `modules` are imported relative to backend/
    os.chdir(BACKEND_DIR)
    if str(BACKEND_DIR) not in sys.path:
        sys.path.insert(0, str(BACKEND_DIR))

    if not (BACKEND_DIR / "app.py").exists():
        print(f"ERROR: app.py not found in {BACKEND_DIR}")
        return 1

    try:
        import uvicorn
    except ImportError as e:
        print(f"❌ uvicorn is not installed: {e}")
        return 1

    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "8000"))
    log_level = os.getenv("LOG_LEVEL", "info").lower()
    print(f"🚀 Inventory lending API on http://{host}:{port}")

    uvicorn.run("app:app", host=host, port=port, reload=False, log_level=log_level)
    return 0


if __name__ == "__main__":
    sys.exit(main())
