"""Tests for the command line entry point."""

import getpass

from omnikeyring.app import main

from conftest import ALICE, VECTOR_ETH_ADDRESS, VECTOR_MNEMONIC


class TestCli:
    def test_chains(self, capsys):
        assert main(["chains"]) == 0
        out = capsys.readouterr().out
        assert "Derivation table v1" in out
        assert "m/44'/9999'/0'/0/0" in out

    def test_addresses(self, capsys):
        assert main(["addresses", *VECTOR_MNEMONIC.split()]) == 0
        out = capsys.readouterr().out
        assert VECTOR_ETH_ADDRESS in out
        assert "XOM" in out

    def test_addresses_single_chain(self, capsys):
        assert main(["addresses", "-c", "omnicoin", *VECTOR_MNEMONIC.split()]) == 0
        out = capsys.readouterr().out
        assert VECTOR_ETH_ADDRESS not in out
        assert "omnicoin" in out

    def test_invalid_mnemonic(self, capsys):
        assert main(["addresses", "not", "a", "mnemonic"]) == 2
        assert "INVALID_SEED" in capsys.readouterr().err

    def test_derive(self, capsys, monkeypatch):
        monkeypatch.setattr(getpass, "getpass", lambda prompt="": ALICE.password)
        assert main(["derive", "alice"]) == 0
        out = capsys.readouterr().out
        assert "alice.omnicoin" in out
        assert ALICE.password not in out

    def test_derive_short_password(self, capsys, monkeypatch):
        monkeypatch.setattr(getpass, "getpass", lambda prompt="": "short")
        assert main(["derive", "alice"]) == 2
        assert "INVALID_CREDENTIALS" in capsys.readouterr().err

    def test_generate(self, capsys):
        assert main(["generate"]) == 0
        out = capsys.readouterr().out
        phrase = out.splitlines()[1].strip()
        assert len(phrase.split()) == 24

    def test_no_command(self, capsys):
        assert main([]) == 1
