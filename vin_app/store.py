import logging
from datetime import date, datetime, time, timedelta

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from .db import VinRecord
from .exceptions import StorageError, VinConflictError, VinNotFoundError, VinValidationError
from .validation import is_valid_vin, normalize_vin, to_utc_naive, utcnow

logger = logging.getLogger(__name__)


class VinStore:
    """
    Access to the vins table through a single SQLAlchemy session.

    A store is built per request around the session handed out by get_db.
    """

    def __init__(self, db: Session):
        self.db = db

    def create(
        self,
        code: str | None,
        recorded_at: datetime | None = None,
        user_agent: str | None = None,
        ip_address: str | None = None,
    ) -> VinRecord:
        """
        Validate and insert a new VIN record.

        Args:
            code (str): The VIN, normalized to uppercase before validation.
            recorded_at (datetime): When the VIN was captured. Defaults to now.
            user_agent (str): Submitting client, if known.
            ip_address (str): Submitting address, if known.

        Returns:
            VinRecord: The stored record.

        Raises:
            VinValidationError: The code is missing or not a valid VIN.
            VinConflictError: A record with the same code already exists.
            StorageError: Any other database failure.
        """
        if not isinstance(code, str) or not is_valid_vin(normalize_vin(code)):
            raise VinValidationError("VIN code is invalid or missing")
        code = normalize_vin(code)

        record = VinRecord(
            code=code,
            date_created=to_utc_naive(recorded_at) if recorded_at else utcnow(),
            user_agent=user_agent,
            ip_address=ip_address,
        )
        try:
            self.db.add(record)
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            if self._exists(code):
                logger.info(f"Duplicate VIN rejected: {code}")
                raise VinConflictError("This VIN already exists in the database") from e
            logger.exception(f"Integrity error while inserting VIN: {code}")
            raise StorageError(str(e.orig)) from e
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.exception(f"Error occurred while inserting VIN: {code}")
            raise StorageError(str(e)) from e

        self.db.refresh(record)
        return record

    def get(self, vin_id: int) -> VinRecord:
        record = self._run(lambda: self.db.get(VinRecord, vin_id))
        if record is None:
            raise VinNotFoundError("VIN not found")
        return record

    def delete(self, vin_id: int) -> VinRecord:
        """
        Delete a record by id and return its state prior to deletion.
        """
        record = self.get(vin_id)
        try:
            self.db.delete(record)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.exception(f"Error occurred while deleting VIN id {vin_id}")
            raise StorageError(str(e)) from e
        return record

    def list_all(self) -> list[VinRecord]:
        return self.search()

    def search(
        self,
        query: str | None = None,
        date_from: date | None = None,
        date_to: date | None = None,
    ) -> list[VinRecord]:
        """
        Filter records by code substring and recorded date range, newest first.

        All filters are optional and combined with AND. Date bounds are
        inclusive and compare the date part of the recorded timestamp.
        """
        q = self.db.query(VinRecord)
        if query:
            q = q.filter(VinRecord.code.contains(query.strip().upper(), autoescape=True))
        if date_from:
            q = q.filter(VinRecord.date_created >= datetime.combine(date_from, time.min))
        if date_to:
            q = q.filter(VinRecord.date_created < datetime.combine(date_to + timedelta(days=1), time.min))
        q = q.order_by(VinRecord.created_at.desc(), VinRecord.id.desc())
        return self._run(q.all)

    def count(self) -> int:
        return self._run(self.db.query(func.count(VinRecord.id)).scalar)

    def stats(self, now: datetime | None = None) -> dict:
        """
        Count records by insertion time: total, today, trailing week and calendar month.
        """
        now = now or utcnow()
        start_of_today = datetime.combine(now.date(), time.min)
        start_of_tomorrow = start_of_today + timedelta(days=1)
        start_of_month = start_of_today.replace(day=1)
        if start_of_month.month == 12:
            start_of_next_month = start_of_month.replace(year=start_of_month.year + 1, month=1)
        else:
            start_of_next_month = start_of_month.replace(month=start_of_month.month + 1)

        def count_between(start=None, end=None):
            q = self.db.query(func.count(VinRecord.id))
            if start is not None:
                q = q.filter(VinRecord.created_at >= start)
            if end is not None:
                q = q.filter(VinRecord.created_at < end)
            return self._run(q.scalar)

        return {
            "total": count_between(),
            "today": count_between(start_of_today, start_of_tomorrow),
            "thisWeek": count_between(start_of_today - timedelta(days=7)),
            "thisMonth": count_between(start_of_month, start_of_next_month),
        }

    def _exists(self, code: str) -> bool:
        return self.db.query(VinRecord.id).filter(VinRecord.code == code).first() is not None

    def _run(self, operation):
        try:
            return operation()
        except SQLAlchemyError as e:
            logger.exception("Error occurred while querying VIN records")
            raise StorageError(str(e)) from e
