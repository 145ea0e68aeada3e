"""
Module: ledger_engines.lot_resolver
Responsibility:
    Map an arbitrary lot token typed by a user (or copied from the other
    facility) to the canonical lot code known to a facility's lot master.
    The two facilities spell the same physical lot differently
    ("24A" vs "SV-24A"), so every read path and the synchronizer resolve
    lots through here.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Idempotence: ``resolve(p, resolve(p, t)) == resolve(p, t)``.
    - Never drops a token: when no unique canonical code exists the input
      token comes back unchanged with an UNRESOLVED / AMBIGUOUS outcome.

Resolution order:
    1. Exact match among the product's lot codes.
    2. Normalized-equal match (uppercase, alphanumerics only).
    3. Product-scope suffix candidates: normalized code ends with the
       normalized token.  Codes sharing a normalized form collapse to the
       longest raw spelling.  Exactly one distinct candidate wins.
    4. Global suffix candidates across all products, accepted only when
       exactly one exists.
    5. Otherwise the token is returned unchanged.

Usage:
    from ledger_engines.lot_resolver import LotResolver

    resolver = LotResolver(master.lots)
    resolver.resolve("SV", "24A")          # "SV-24A"
    resolver.resolve_detailed("SV", "9Z")  # LotResolution(..., UNRESOLVED)
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from enum import Enum
from typing import Iterable

from ledger_kernel.domain.master_data import LotMasterEntry
from ledger_kernel.domain.normalize import clean, normalize_lot_token
from ledger_kernel.exceptions import UnresolvedLotError
from ledger_kernel.logging_config import get_logger

logger = get_logger("engines.lot_resolver")


class ResolutionOutcome(str, Enum):
    EXACT = "exact"
    NORMALIZED = "normalized"
    SUFFIX = "suffix"
    GLOBAL_SUFFIX = "global_suffix"
    UNRESOLVED = "unresolved"
    AMBIGUOUS = "ambiguous"

    @property
    def is_resolved(self) -> bool:
        return self not in (ResolutionOutcome.UNRESOLVED, ResolutionOutcome.AMBIGUOUS)


@dataclass(frozen=True)
class LotResolution:
    """Result of resolving one token, with the candidates considered."""

    product: str
    token: str
    lot: str
    outcome: ResolutionOutcome
    candidates: tuple[str, ...] = ()

    @property
    def is_resolved(self) -> bool:
        return self.outcome.is_resolved

    def to_dict(self) -> dict:
        return {
            "product": self.product,
            "token": self.token,
            "lot": self.lot,
            "outcome": self.outcome.value,
            "candidates": list(self.candidates),
        }


def _collapse(codes: Iterable[str]) -> list[str]:
    """One code per normalized form, preferring the longest raw spelling."""
    by_norm: dict[str, str] = {}
    for code in codes:
        norm = normalize_lot_token(code)
        current = by_norm.get(norm)
        if current is None or (len(code), code) > (len(current), current):
            by_norm[norm] = code
    return sorted(by_norm.values())


class LotResolver:
    """
    Canonicalizes lot tokens against one facility's lot master.

    Contract:
        Built once per lot-master snapshot; stateless afterwards.
    Guarantees:
        - Deterministic output for identical master data and input.
    """

    def __init__(self, master_lots: Iterable[LotMasterEntry]):
        by_product: dict[str, set[str]] = defaultdict(set)
        for entry in master_lots:
            product = clean(entry.product).upper()
            lot = clean(entry.lot)
            if product and lot:
                by_product[product].add(lot)
        self._by_product: dict[str, tuple[str, ...]] = {
            product: tuple(sorted(lots)) for product, lots in by_product.items()
        }
        self._all_codes: tuple[str, ...] = tuple(
            sorted({lot for lots in self._by_product.values() for lot in lots})
        )

    def codes_for(self, product: str) -> tuple[str, ...]:
        return self._by_product.get(clean(product).upper(), ())

    def knows(self, product: str, lot: str) -> bool:
        return clean(lot) in self.codes_for(product)

    def resolve(self, product: str, token: str) -> str:
        return self.resolve_detailed(product, token).lot

    def resolve_detailed(self, product: str, token: str) -> LotResolution:
        product_key = clean(product).upper()
        raw = clean(token)
        if not raw:
            return LotResolution(product_key, raw, raw, ResolutionOutcome.UNRESOLVED)

        scope = self._by_product.get(product_key, ())
        if raw in scope:
            return LotResolution(product_key, raw, raw, ResolutionOutcome.EXACT)

        norm = normalize_lot_token(raw)
        if not norm:
            return LotResolution(product_key, raw, raw, ResolutionOutcome.UNRESOLVED)

        equal = _collapse(code for code in scope if normalize_lot_token(code) == norm)
        if equal:
            return LotResolution(
                product_key, raw, equal[0], ResolutionOutcome.NORMALIZED, tuple(equal)
            )

        scoped = _collapse(code for code in scope if normalize_lot_token(code).endswith(norm))
        if len(scoped) == 1:
            return LotResolution(
                product_key, raw, scoped[0], ResolutionOutcome.SUFFIX, tuple(scoped)
            )

        if not scoped:
            global_hits = _collapse(
                code for code in self._all_codes if normalize_lot_token(code).endswith(norm)
            )
            if len(global_hits) == 1:
                return LotResolution(
                    product_key, raw, global_hits[0],
                    ResolutionOutcome.GLOBAL_SUFFIX, tuple(global_hits),
                )
            if global_hits:
                return LotResolution(
                    product_key, raw, raw, ResolutionOutcome.AMBIGUOUS, tuple(global_hits)
                )
            return LotResolution(product_key, raw, raw, ResolutionOutcome.UNRESOLVED)

        logger.debug(
            "lot_resolution_ambiguous",
            extra={"product": product_key, "token": raw, "candidates": scoped},
        )
        return LotResolution(product_key, raw, raw, ResolutionOutcome.AMBIGUOUS, tuple(scoped))

    def require(self, product: str, token: str) -> str:
        """
        Strict variant of ``resolve``.

        Raises:
            UnresolvedLotError: when the token has no unique canonical code.
        """
        result = self.resolve_detailed(product, token)
        if not result.is_resolved:
            raise UnresolvedLotError(result.product, result.token, result.candidates)
        return result.lot
