"""
OmniKeyring - command line entry point.

Offline helpers over the derivation table: show the accounts a
username/password pair or a mnemonic derives to. Nothing is stored.
"""

import argparse
import getpass
import logging
import sys
from typing import Optional

from .errors import KeyringError
from .models import Credentials
from .networks import CHAINS, DERIVATION_TABLE_VERSION, get_chain
from .services.logging import configure_logging
from .utils import load_settings
from .wallet import MnemonicWallet, derive_mnemonic


def _print_accounts(wallet: MnemonicWallet, chains: list[str],
                    username: Optional[str] = None) -> None:
    for account in wallet.derive_accounts(chains, username):
        print(f"  {account.chain_type:<10} {account.address}  ({account.derivation_path})")
        account.wipe()
    if username:
        print(f"  alias      {username.lower()}.omnicoin")


def _chains(args) -> list[str]:
    if args.chain:
        return [get_chain(c).chain_type for c in args.chain]
    return load_settings().chains


def cmd_derive(args) -> int:
    password = getpass.getpass("Password: ")
    credentials = Credentials(username=args.username, password=password)
    credentials.validate()

    wallet = MnemonicWallet(derive_mnemonic(credentials))
    try:
        print(f"Accounts for {credentials.normalized_username}:")
        _print_accounts(wallet, _chains(args), credentials.normalized_username)
    finally:
        wallet.lock()
    return 0


def cmd_generate(args) -> int:
    wallet = MnemonicWallet.generate()
    try:
        print("Recovery phrase (write it down, it is shown once):")
        print(f"  {wallet.seed_phrase}")
        print()
        print("Accounts:")
        _print_accounts(wallet, _chains(args))
    finally:
        wallet.lock()
    return 0


def cmd_addresses(args) -> int:
    phrase = " ".join(args.mnemonic) if args.mnemonic else getpass.getpass("Recovery phrase: ")
    wallet = MnemonicWallet(phrase)
    try:
        print("Accounts:")
        _print_accounts(wallet, _chains(args))
    finally:
        wallet.lock()
    return 0


def cmd_chains(args) -> int:
    print(f"Derivation table v{DERIVATION_TABLE_VERSION}:")
    for chain in CHAINS.values():
        print(f"  {chain.chain_type:<10} {chain.derivation_path(0):<22} "
              f"chainId={chain.chain_id:<9} {chain.native_symbol}")
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="omnikeyring",
        description="Unified multi-chain keyring",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s derive alice                Show accounts for a username (prompts for password)
  %(prog)s generate                    Create a fresh 24-word recovery phrase
  %(prog)s addresses word1 ... word24  Show accounts for a recovery phrase
  %(prog)s chains                      Show the derivation table
        """
    )
    parser.add_argument('-v', '--verbose', action='store_true', help='Debug logging')

    subparsers = parser.add_subparsers(dest='command', help='Commands')

    derive_parser = subparsers.add_parser('derive', help='Derive accounts from username/password')
    derive_parser.add_argument('username', help='Username')

    generate_parser = subparsers.add_parser('generate', help='Generate a new recovery phrase')

    addr_parser = subparsers.add_parser('addresses', help='Derive accounts from a recovery phrase')
    addr_parser.add_argument('mnemonic', nargs='*', help='Recovery phrase words (or enter interactively)')

    for sub in (derive_parser, generate_parser, addr_parser):
        sub.add_argument('-c', '--chain', action='append',
                         help='Chain to derive (repeatable, default: configured chains)')

    subparsers.add_parser('chains', help='Show the chain derivation table')

    args = parser.parse_args(argv)
    configure_logging(logging.DEBUG if args.verbose else logging.WARNING)

    commands = {
        'derive': cmd_derive,
        'generate': cmd_generate,
        'addresses': cmd_addresses,
        'chains': cmd_chains,
    }

    if args.command not in commands:
        parser.print_help()
        return 1

    try:
        return commands[args.command](args)
    except KeyringError as e:
        print(f"Error: {e.message} ({e.code})", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
