#!/usr/bin/env python3
"""Sealpost development relay — run standalone.

Usage:
    python run_relay.py                  # default port 8080
    python run_relay.py --port 9090      # custom port

Point clients at it with --relay http://localhost:8080. The relay holds
encrypted frames it cannot read.
"""

import argparse
import logging

import uvicorn

from sealpost.relay_server import relay_app

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%H:%M:%S",
)


def main():
    parser = argparse.ArgumentParser(description="Sealpost development relay")
    parser.add_argument("--host", default="127.0.0.1", help="Interface to bind")
    parser.add_argument("--port", type=int, default=8080, help="Port to listen on")
    parser.add_argument("--data-dir", default="relay_data", help="Data directory")
    args = parser.parse_args()

    relay_app.state.data_dir = args.data_dir

    print(f"\n  Sealpost Relay v0.1.0")
    print(f"  Listen: http://{args.host}:{args.port}")
    print(f"  Data:   {args.data_dir}\n")

    uvicorn.run(relay_app, host=args.host, port=args.port, log_level="info")


if __name__ == "__main__":
    main()
