from datetime import datetime

from sqlalchemy import Column, DateTime, Float, ForeignKey, Integer

from .base import Base


class DailyIndicator(Base):
    """
    SQLAlchemy model for the daily ATR of an instrument.

    The whole table is a derived cache: every daily-indicator run deletes all
    rows and inserts a fresh set.
    """
    __tablename__ = 'daily_indicators'

    id = Column(Integer, primary_key=True, autoincrement=True)
    instrument_id = Column(Integer, ForeignKey('instruments.id'), nullable=False, index=True)
    timestamp = Column(DateTime, nullable=False, comment='Trading day the ATR was computed for')
    atr = Column(Float, comment='Average true range over the configured period')
    created_at = Column(DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f"<DailyIndicator(instrument_id={self.instrument_id}, timestamp='{self.timestamp}', atr={self.atr})>"
