#!/usr/bin/env python3
"""Example: send a message to yourself through a local development relay.

Usage:
  # Start the relay first
  python run_relay.py --port 8080
  python examples/loopback.py
"""

import io
import os
import sys
import tempfile

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
from sealpost import SealpostClient
from sealpost.config import ClientConfig

keys_dir = tempfile.mkdtemp(prefix="sealpost-")
config = ClientConfig(keys_dir=keys_dir, relay_url="http://localhost:8080")

with SealpostClient(config) as client:
    print(f"\n  Keys in {keys_dir}")
    bob = client.keygen("bob")
    print(f"  bob's topic: {bob.topic}\n")

    message = b"Meet at the usual place. " * 20
    print(f"  1. Sending {len(message)} bytes to bob...")
    report = client.send("bob", [io.BytesIO(message)], chunk_size=140, delay=0.2)
    print(f"     -> {report.published}/{report.chunks} frames published")

    print("  2. Receiving as bob (first receive polls everything)...")
    out = io.BytesIO()
    received = client.receive("bob", out)
    print(f"     -> {received.emitted} frames, {len(out.getvalue())} bytes, match={out.getvalue() == message}")

    print("  3. Receiving again (mark stays put)...")
    received = client.receive("bob", io.BytesIO())
    print(f"     -> since={received.since}, {received.emitted} frames\n")
