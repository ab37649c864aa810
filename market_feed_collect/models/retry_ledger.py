from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, UniqueConstraint

from .base import Base


class RetryLedgerEntry(Base):
    """A symbol/timeframe/timestamp whose fetch failed and is waiting to be retried."""
    __tablename__ = 'retry_ledger'

    id = Column(Integer, primary_key=True, autoincrement=True)
    instrument_id = Column(Integer, ForeignKey('instruments.id'), nullable=False)
    timeframe_id = Column(Integer, ForeignKey('timeframes.id'), nullable=False)
    timestamp = Column(DateTime, nullable=False, comment='Exact bar time that failed to import')
    reason = Column(String, comment='Why the fetch failed')
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint('instrument_id', 'timeframe_id', 'timestamp', name='uq_retry_ledger_instrument_tf_ts'),
    )

    def __repr__(self):
        return (f"<RetryLedgerEntry(instrument_id={self.instrument_id}, timeframe_id={self.timeframe_id}, "
                f"timestamp='{self.timestamp}', reason='{self.reason}')>")
