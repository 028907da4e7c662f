"""Command line interface.

Usage:
    sealpost keygen bob                      # writes bob.key and bob.pub
    sealpost topic bob                       # relay topic for bob's public key
    sealpost send bob notes.txt              # encrypt and post notes.txt to bob
    echo hi | sealpost send ./alice.pub      # send stdin to a shared .pub file
    sealpost receive bob                     # new frames since bob's mark
    sealpost receive bob --all               # everything the relay still holds
"""

import argparse
import contextlib
import logging
import sys

from . import __version__
from .config import DEFAULT_CHUNK, DEFAULT_DELAY, MAX_CHUNK, MIN_CHUNK, ClientConfig, TransportPolicy
from .client import SealpostClient
from .exceptions import ConfigurationError, SealpostError

logger = logging.getLogger("sealpost")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sealpost",
        description="End-to-end encrypted messages over a public pub/sub relay",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--keys-dir", default=None,
                        help="Keypair directory (default: $SEALPOST_HOME or ~/.sealpost)")
    parser.add_argument("--relay", default=None,
                        help="Relay base URL (default: $SEALPOST_RELAY or https://ntfy.sh)")
    parser.add_argument("-v", "--verbose", action="count", default=0,
                        help="Log progress to stderr (-vv for debug)")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("keygen", help="Create a new keypair")
    p.add_argument("name")

    p = sub.add_parser("pubkey", help="Rewrite NAME.pub from NAME.key")
    p.add_argument("name")

    p = sub.add_parser("topic", help="Print the relay topic of a recipient")
    p.add_argument("recipient", help="Keypair name or path to a .pub file")

    p = sub.add_parser("send", help="Encrypt files (or stdin) to a recipient")
    p.add_argument("recipient", help="Keypair name or path to a .pub file")
    p.add_argument("files", nargs="*", help="Input files, concatenated; '-' or none reads stdin")
    p.add_argument("-s", "--chunk-size", type=int, default=DEFAULT_CHUNK,
                   help=f"Plaintext bytes per frame, {MIN_CHUNK}..{MAX_CHUNK} (default: {DEFAULT_CHUNK})")
    p.add_argument("-d", "--delay", type=float, default=DEFAULT_DELAY,
                   help=f"Seconds to wait after each frame (default: {DEFAULT_DELAY:g})")
    p.add_argument("--strict", action="store_true", help="Stop at the first frame that fails")

    p = sub.add_parser("receive", help="Fetch and decrypt frames for a keypair")
    p.add_argument("name")
    p.add_argument("-a", "--all", dest="fetch_all", action="store_true",
                   help="Fetch the full relay history instead of starting at the mark")
    p.add_argument("--strict", action="store_true", help="Stop at the first frame that fails")

    return parser


def configure_logging(verbosity: int):
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity > 1:
        level = logging.DEBUG
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
    )


def _open_inputs(stack: contextlib.ExitStack, files: list[str]) -> list:
    if not files:
        return [sys.stdin.buffer]
    streams = []
    for name in files:
        if name == "-":
            streams.append(sys.stdin.buffer)
            continue
        try:
            streams.append(stack.enter_context(open(name, "rb")))
        except OSError as e:
            raise ConfigurationError(f"Cannot read {name}: {e}") from e
    return streams


def run(args: argparse.Namespace) -> int:
    policy = TransportPolicy(continue_on_error=not getattr(args, "strict", False))
    config = ClientConfig.from_env(keys_dir=args.keys_dir, relay_url=args.relay, policy=policy)
    if args.command == "send":
        policy.clamp_delay(args.delay)

    with SealpostClient(config) as client:
        if args.command == "keygen":
            keypair = client.keygen(args.name)
            print(f"{config.public_key_path(keypair.name)}")
            print(f"topic: {keypair.topic}")
        elif args.command == "pubkey":
            keypair = client.rederive_public(args.name)
            print(f"{config.public_key_path(keypair.name)}")
        elif args.command == "topic":
            print(client.topic(args.recipient))
        elif args.command == "send":
            with contextlib.ExitStack() as stack:
                inputs = _open_inputs(stack, args.files)
                report = client.send(args.recipient, inputs,
                                     chunk_size=args.chunk_size, delay=args.delay)
            if report.failed:
                logger.warning(f"{report.failed} of {report.chunks} chunks were not delivered")
        elif args.command == "receive":
            client.receive(args.name, sys.stdout.buffer, fetch_all=args.fetch_all)
    return 0


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.verbose)
    try:
        return run(args)
    except ConfigurationError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1
    except SealpostError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
