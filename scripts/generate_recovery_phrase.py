#!/usr/bin/env python3
"""Generate a BIP-39 recovery phrase for deterministic ecashvault wallets.

Prints a fresh phrase and the fingerprint of the wallet seed derived
from it. The fingerprint is what ecashvault logs when deterministic
mode is active, so you can confirm a restore used the right phrase:

  - Store the phrase offline; it restores every proof the wallet mints
  - Export it as ECASHVAULT_MNEMONIC and set ECASHVAULT_UNLOCK=1 to
    enable deterministic mode for a session

Requires: pip install ecashvault
"""

from __future__ import annotations

import argparse

from mnemonic import Mnemonic

from ecashvault.seed import derive_seed


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--words", type=int, choices=(12, 24), default=12)
    args = parser.parse_args()

    strength = 128 if args.words == 12 else 256
    phrase = Mnemonic("english").generate(strength=strength)
    seed = derive_seed(phrase)
    if seed is None:
        raise SystemExit("Generated phrase failed validation; nothing was printed.")

    with seed:
        print("=== ecashvault Recovery Phrase ===")
        print()
        print("phrase (PRIVATE — write it down, never commit to git):")
        print(f"  {phrase}")
        print()
        print(f"wallet seed fingerprint: {seed.fingerprint()}")
        print()
        print("--- Environment variable usage ---")
        print()
        print("  ECASHVAULT_MNEMONIC='<phrase>'")
        print("  ECASHVAULT_UNLOCK=1")


if __name__ == "__main__":
    main()
