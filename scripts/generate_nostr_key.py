#!/usr/bin/env python3
"""Generate the relay admin signing key.

Usage::

    python scripts/generate_nostr_key.py          # prints nsec + npub to stdout
    python scripts/generate_nostr_key.py -o .env  # appends `NOSTR_NSEC=<nsec>` to .env

The npub (and hex pubkey) must then be granted admin rights on the relay's
NIP-86 management API. Losing the nsec means re-registering a new admin key
with the relay operator, so store it as a secret (or a ``NOSTR_NSEC_FILE``).
"""

from __future__ import annotations

import argparse
from pathlib import Path

from coincurve import PrivateKey

from relay_admin.utils.nostr import NostrSigner


def _generate_key() -> NostrSigner:
    return NostrSigner(PrivateKey().secret)


def main() -> None:  # noqa: D401
    parser = argparse.ArgumentParser(description="Generate a Nostr signing key for the relay admin")
    parser.add_argument("-o", "--output", type=Path, help="Append NOSTR_NSEC to given file in .env format")
    args = parser.parse_args()

    signer = _generate_key()
    nsec = signer.nsec

    if args.output:
        args.output.parent.mkdir(parents=True, exist_ok=True)
        with args.output.open("a", encoding="utf-8") as fp:
            fp.write(f"NOSTR_NSEC={nsec}\n")
        print(f"Key appended to {args.output}")
    else:
        print(nsec)

    print(f"npub:   {signer.npub}")
    print(f"pubkey: {signer.pubkey}")


if __name__ == "__main__":
    main()
