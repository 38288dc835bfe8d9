"""InkVerse Muse: dev launcher. Starts the API server with uvicorn."""

import argparse
import os
from pathlib import Path

import uvicorn
from dotenv import load_dotenv

ROOT = Path(__file__).parent
load_dotenv(ROOT / ".env")

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "13013"))


def main():
    parser = argparse.ArgumentParser(description="InkVerse Muse dev launcher")
    parser.add_argument("--data-dir", type=Path, default=None,
                        help="Data storage directory (default: ./data)")
    parser.add_argument("--reload", action="store_true",
                        help="Restart on source changes")
    args = parser.parse_args()

    # The app module reads DATA_DIR at import, also in reload workers
    if args.data_dir:
        os.environ["DATA_DIR"] = str(args.data_dir.resolve())

    print(f"Starting API on http://localhost:{PORT} ...")
    uvicorn.run("inkverse.app:app", host=HOST, port=PORT, reload=args.reload)


if __name__ == "__main__":
    main()
