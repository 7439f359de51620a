"""ArgumentCodec unit tests."""

from __future__ import annotations

import pytest

from dx_cli_mcp.runtime import (
    SPACE_SENTINEL,
    ArgumentEncodingError,
    decode,
    encode,
    split_command_line,
)


class TestEncodeDecode:
    """Test space substitution."""

    def test_encode_replaces_every_space(self):
        assert encode("/tmp/my dir/a b.apex") == (
            f"/tmp/my{SPACE_SENTINEL}dir/a{SPACE_SENTINEL}b.apex"
        )

    def test_encode_without_spaces_is_identity(self):
        assert encode("/tmp/file.apex") == "/tmp/file.apex"

    def test_encoded_value_has_no_whitespace(self):
        assert " " not in encode("  leading and trailing  ")

    @pytest.mark.parametrize(
        "raw",
        ["", "plain", "a b", "  two  spaces  ", "C:\\Program Files\\sfdx\\bin", "ünï cødé"],
    )
    def test_decode_reverses_encode(self, raw: str):
        assert decode(encode(raw)) == raw

    def test_sentinel_in_input_is_rejected(self):
        with pytest.raises(ArgumentEncodingError):
            encode(f"bad{SPACE_SENTINEL}value")

    def test_encoding_error_is_value_error(self):
        with pytest.raises(ValueError):
            encode(SPACE_SENTINEL)

    def test_decode_plain_token_unchanged(self):
        assert decode("--json") == "--json"


class TestSplitCommandLine:
    """Test command line splitting."""

    def test_splits_on_whitespace_and_decodes(self):
        line = f"sfdx force:apex:execute --apexcodefile {encode('/tmp/exec anon.apex')} --json"
        assert split_command_line(line) == [
            "sfdx",
            "force:apex:execute",
            "--apexcodefile",
            "/tmp/exec anon.apex",
            "--json",
        ]

    def test_drops_empty_tokens(self):
        assert split_command_line("  sfdx   force:org:list \t --json ") == [
            "sfdx",
            "force:org:list",
            "--json",
        ]

    def test_empty_line(self):
        assert split_command_line("") == []
