from __future__ import annotations

import argparse

from .app import create_console_app


def main() -> None:
    parser = argparse.ArgumentParser(description="Run the workflow console service")
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=8000)
    parser.add_argument("--db", default=None, help="sqlite path (defaults to WORKFLOW_DB_PATH or ./workflows.db)")
    args = parser.parse_args()

    app = create_console_app(args.db)
    app.run(host=args.host, port=args.port, debug=False)


if __name__ == "__main__":
    main()
