# medscan/services/records.py
from __future__ import annotations

import asyncio
import logging
import time
from contextlib import contextmanager
from typing import Any, Callable, Dict, Optional

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from medscan.config import Settings
from medscan.db import SessionLocal, engine, Base
from medscan.errors import RecordStoreError
from medscan.intake.schema import PatientIntake
from medscan.logging_config import mask_phone
from medscan.models import AnalysisReport, Patient, generate_uuid
from medscan.services.policy import call_with_policy, is_transient

logger = logging.getLogger(__name__)


@contextmanager
def db_session(factory: Callable[[], Session] = SessionLocal):
    db = factory()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def init_db() -> None:
    """
    Create all tables. Called once at startup.
    """
    Base.metadata.create_all(bind=engine)


def _store_transient(exc: BaseException) -> bool:
    # Lost connections and lock timeouts surface as OperationalError.
    return isinstance(exc, OperationalError) or is_transient(exc)


def now_millis() -> int:
    return int(time.time() * 1000)


class PatientRecordStore:
    """
    Patient records and their analysis reports.

    Each public method performs exactly one unit of work in a worker
    thread, under the adapter timeout/retry policy.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        *,
        timeout: float = 15.0,
        retries: int = 1,
        backoff: float = 0.5,
    ):
        self.session_factory = session_factory
        self.timeout = timeout
        self.retries = retries
        self.backoff = backoff

    @classmethod
    def from_settings(cls, settings: Settings) -> "PatientRecordStore":
        return cls(
            timeout=settings.store_timeout_seconds,
            retries=settings.retry_attempts,
            backoff=settings.retry_backoff_seconds,
        )

    async def create(self, intake: PatientIntake, timestamp: Optional[int] = None) -> str:
        ts = timestamp if timestamp is not None else now_millis()
        # Id is fixed up front so a retried attempt cannot add a second row.
        patient_id = await self._run("create patient", self._create, generate_uuid(), intake, ts)
        logger.info(
            "Created patient %s (%s, phone %s)",
            patient_id, intake.service_type.value, mask_phone(intake.phone_number),
        )
        return patient_id

    async def write_report(self, patient_id: str, fields: Dict[str, Any]) -> None:
        await self._run("write report", self._write_report, patient_id, fields)
        logger.info("Saved analysis report for patient %s", patient_id)

    async def read_report(self, patient_id: str) -> Optional[Dict[str, Any]]:
        return await self._run("read report", self._read_report, patient_id)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _run(self, label: str, fn: Callable[..., Any], *args: Any) -> Any:
        return await call_with_policy(
            lambda: asyncio.to_thread(fn, *args),
            label=f"Record store: {label}",
            error_cls=RecordStoreError,
            timeout=self.timeout,
            retries=self.retries,
            backoff=self.backoff,
            transient=_store_transient,
        )

    def _create(self, patient_id: str, intake: PatientIntake, timestamp: int) -> str:
        try:
            with db_session(self.session_factory) as session:
                if session.get(Patient, patient_id) is not None:
                    # Written by an attempt that outlived its timeout.
                    return patient_id
                session.add(Patient(
                    id=patient_id,
                    full_name=intake.full_name,
                    phone_number=intake.phone_number,
                    service_type=intake.service_type.value,
                    timestamp=timestamp,
                ))
        except IntegrityError:
            if not self._patient_exists(patient_id):
                raise
        return patient_id

    def _patient_exists(self, patient_id: str) -> bool:
        with db_session(self.session_factory) as session:
            return session.get(Patient, patient_id) is not None

    def _write_report(self, patient_id: str, fields: Dict[str, Any]) -> None:
        with db_session(self.session_factory) as session:
            if session.get(Patient, patient_id) is None:
                raise RecordStoreError(f"Patient {patient_id} not found")

            existing = session.get(AnalysisReport, patient_id)
            if existing is None:
                session.add(AnalysisReport(patient_id=patient_id, data=dict(fields)))
            else:
                existing.data = dict(fields)

    def _read_report(self, patient_id: str) -> Optional[Dict[str, Any]]:
        with db_session(self.session_factory) as session:
            report = session.get(AnalysisReport, patient_id)
            if report is None:
                return None
            return dict(report.data)
