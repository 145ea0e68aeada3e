"""
Tests for the lot resolver.

Covers:
- Exact, normalized, product-scope suffix and global suffix matches
- Ambiguity and unresolved tokens (token returned unchanged)
- Strict resolution
"""

import pytest

from ledger_engines.lot_resolver import LotResolver, ResolutionOutcome
from ledger_kernel.domain.master_data import LotMasterEntry
from ledger_kernel.exceptions import UnresolvedLotError


@pytest.fixture
def resolver():
    return LotResolver(
        [
            LotMasterEntry("SV", "SV-24A"),
            LotMasterEntry("SV", "SV-25B"),
            LotMasterEntry("SV", "SV-15B"),
            LotMasterEntry("KT", "KT-001"),
            LotMasterEntry("ZX", "ZX-77Q"),
        ]
    )


class TestResolutionOrder:
    def test_exact(self, resolver):
        result = resolver.resolve_detailed("SV", "SV-24A")
        assert result.lot == "SV-24A"
        assert result.outcome == ResolutionOutcome.EXACT

    def test_normalized(self, resolver):
        result = resolver.resolve_detailed("sv", "sv 24a")
        assert result.lot == "SV-24A"
        assert result.outcome == ResolutionOutcome.NORMALIZED

    def test_product_scope_suffix(self, resolver):
        result = resolver.resolve_detailed("SV", "24A")
        assert result.lot == "SV-24A"
        assert result.outcome == ResolutionOutcome.SUFFIX

    def test_global_suffix_when_product_has_no_candidate(self, resolver):
        result = resolver.resolve_detailed("NEW", "77Q")
        assert result.lot == "ZX-77Q"
        assert result.outcome == ResolutionOutcome.GLOBAL_SUFFIX

    def test_ambiguous_suffix_returns_token(self, resolver):
        result = resolver.resolve_detailed("SV", "5B")
        assert result.lot == "5B"
        assert result.outcome == ResolutionOutcome.AMBIGUOUS
        assert result.candidates == ("SV-15B", "SV-25B")
        assert not result.is_resolved

    def test_unknown_token_returned_unchanged(self, resolver):
        result = resolver.resolve_detailed("SV", "99Z")
        assert result.lot == "99Z"
        assert result.outcome == ResolutionOutcome.UNRESOLVED

    def test_blank_token(self, resolver):
        assert resolver.resolve_detailed("SV", "  ").outcome == ResolutionOutcome.UNRESOLVED

    def test_punctuation_only_token(self, resolver):
        assert resolver.resolve("SV", "--") == "--"


class TestCollapsing:
    def test_spellings_of_same_lot_collapse_to_longest(self):
        resolver = LotResolver([LotMasterEntry("SV", "SV24A"), LotMasterEntry("SV", "SV-24A")])
        assert resolver.resolve("SV", "24A") == "SV-24A"

    def test_idempotent(self, resolver):
        once = resolver.resolve("SV", "24a")
        assert resolver.resolve("SV", once) == once


class TestQueries:
    def test_codes_and_knows(self, resolver):
        assert resolver.codes_for("sv") == ("SV-15B", "SV-24A", "SV-25B")
        assert resolver.knows("SV", "SV-24A")
        assert not resolver.knows("KT", "SV-24A")

    def test_require_raises_for_ambiguous(self, resolver):
        with pytest.raises(UnresolvedLotError) as exc_info:
            resolver.require("SV", "5B")
        assert exc_info.value.code == "UNRESOLVED_LOT"
        assert exc_info.value.candidates == ("SV-15B", "SV-25B")

    def test_require_returns_canonical(self, resolver):
        assert resolver.require("SV", "24A") == "SV-24A"
