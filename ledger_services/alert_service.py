"""
ledger_services.alert_service -- Supply-risk summary publication.

Responsibility:
    Compute coverage, potential coverage and expiry alerts for every
    facility, store them as the ``alerts/summary`` document and notify the
    configured recipient roles when anything is critical.

Invariants enforced:
    - At most one notification round per calendar day: the summary
      document remembers the day it last notified and the signature of the
      critical rows it notified about.
    - The as-of date bounds the projection (cutoff) and the expiry horizon.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Any

from ledger_config.schema import LedgerConfig
from ledger_engines.coverage import (
    CoverageRow,
    ExpiryRow,
    ExpiryStatus,
    PotentialCoverageRow,
    RiskThresholds,
    classify,
    classify_expiry,
    expiry_alerts,
    potential_coverage,
    risk_ranking,
)
from ledger_engines.projector import ProjectionFilters
from ledger_kernel.domain.clock import Clock
from ledger_kernel.logging_config import get_logger
from ledger_kernel.utils.hashing import short_hash
from ledger_services.collaborators import (
    IdentityProvider,
    NotificationKind,
    Notifier,
    notify_safely,
    users_with_roles,
)
from ledger_services.keys import ALERTS_SUMMARY_KEY
from ledger_services.ledger_service import LedgerService
from ledger_services.master_data_service import MasterDataService
from ledger_services.repository import DocumentRepository, update_document

logger = get_logger("services.alerts")

ALERTS_ACTOR_ID = "alerts"


@dataclass(frozen=True)
class FacilityAlerts:
    facility: str
    coverage: tuple[CoverageRow, ...]
    potential: tuple[PotentialCoverageRow, ...]
    expiry: tuple[ExpiryRow, ...]

    @property
    def critical(self) -> tuple[CoverageRow, ...]:
        return tuple(r for r in self.coverage if r.risk_tier is not None and r.risk_tier.is_critical)

    def to_dict(self) -> dict[str, Any]:
        return {
            "facility": self.facility,
            "coverage": [r.to_dict() for r in risk_ranking(self.coverage)],
            "potential": [r.to_dict() for r in self.potential],
            "expiry": [r.to_dict() for r in self.expiry],
        }


@dataclass(frozen=True)
class AlertSummary:
    as_of: date
    generated_at: datetime
    facilities: tuple[FacilityAlerts, ...]
    notified: bool = False

    @property
    def critical_count(self) -> int:
        return sum(len(f.critical) for f in self.facilities) + sum(
            1 for f in self.facilities for row in f.expiry if row.status == ExpiryStatus.EXPIRED
        )

    def signature(self) -> str:
        return short_hash(
            [
                [f.facility, [r.to_dict() for r in f.critical],
                 [r.to_dict() for r in f.expiry if r.status == ExpiryStatus.EXPIRED]]
                for f in self.facilities
            ]
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "as_of": self.as_of.isoformat(),
            "generated_at": self.generated_at.isoformat(),
            "critical_count": self.critical_count,
            "facilities": [f.to_dict() for f in self.facilities],
        }


class AlertService:
    def __init__(
        self,
        repository: DocumentRepository,
        config: LedgerConfig,
        clock: Clock,
        ledger: LedgerService,
        master_data: MasterDataService,
        notifier: Notifier,
        identity: IdentityProvider,
    ):
        self._repository = repository
        self._config = config
        self._clock = clock
        self._ledger = ledger
        self._master_data = master_data
        self._notifier = notifier
        self._identity = identity
        self._thresholds = RiskThresholds(
            critical_months=config.risk.critical_months,
            warning_months=config.risk.warning_months,
        )

    def compute(self, as_of: date | None = None) -> AlertSummary:
        as_of = as_of or self._clock.now().date()
        facilities = []
        for code in self._config.facility_codes:
            master = self._master_data.master_data(code)
            balances = self._ledger.stock_balances(code, ProjectionFilters(cutoff=as_of))
            facilities.append(
                FacilityAlerts(
                    facility=code,
                    coverage=tuple(
                        classify(balances, list(master.products), thresholds=self._thresholds)
                    ),
                    potential=tuple(
                        potential_coverage(
                            list(master.lots), list(master.products), thresholds=self._thresholds
                        )
                    ),
                    expiry=tuple(
                        expiry_alerts(
                            classify_expiry(
                                master.lots, as_of, self._config.risk.expiry_warning_days
                            )
                        )
                    ),
                )
            )
        return AlertSummary(as_of=as_of, generated_at=self._clock.now(), facilities=tuple(facilities))

    def publish(self, as_of: date | None = None) -> AlertSummary:
        """
        Store the summary and notify recipients once per day when anything
        is critical.
        """
        summary = self.compute(as_of)
        today = self._clock.now().date().isoformat()
        signature = summary.signature()

        def mutate(payload: dict[str, Any]):
            already = payload.get("last_notified_on") == today
            should_notify = summary.critical_count > 0 and not already
            new_payload = {
                **summary.to_dict(),
                "last_notified_on": today if should_notify else payload.get("last_notified_on"),
                "last_signature": signature if should_notify else payload.get("last_signature"),
            }
            return new_payload, should_notify

        should_notify = update_document(
            self._repository, ALERTS_SUMMARY_KEY, mutate, ALERTS_ACTOR_ID,
            max_retries=self._config.sync_max_retries,
        )
        logger.info(
            "alerts_published",
            extra={"critical_count": summary.critical_count, "notify": should_notify},
        )
        if should_notify:
            recipients = users_with_roles(self._identity, self._config.alert_recipient_roles)
            notify_safely(
                self._notifier,
                recipients,
                self._message(summary),
                NotificationKind.STOCK_ALERT,
                logger,
            )
        return AlertSummary(
            as_of=summary.as_of,
            generated_at=summary.generated_at,
            facilities=summary.facilities,
            notified=should_notify,
        )

    def latest(self) -> dict[str, Any]:
        return self._repository.load(ALERTS_SUMMARY_KEY).payload

    @staticmethod
    def _message(summary: AlertSummary) -> str:
        parts = []
        for facility in summary.facilities:
            critical = facility.critical
            if critical:
                products = ", ".join(sorted({r.product for r in critical}))
                parts.append(f"{facility.facility}: {len(critical)} critical ({products})")
            expired = [r for r in facility.expiry if r.status == ExpiryStatus.EXPIRED]
            if expired:
                parts.append(f"{facility.facility}: {len(expired)} expired lot(s)")
        return "Stock alert: " + "; ".join(parts)
