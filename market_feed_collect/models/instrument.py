from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Integer, String

from .base import Base


class Instrument(Base):
    """
    SQLAlchemy model for a tradable instrument.

    Rows are created by external administration; the collector only reads them.
    """
    __tablename__ = 'instruments'

    id = Column(Integer, primary_key=True, autoincrement=True, comment='Internal identifier of the instrument')
    symbol = Column(String(20), unique=True, index=True, nullable=False, comment='Ticker symbol as known by the data provider (e.g., AAPL)')
    company_name = Column(String, comment='Company or fund name')
    active = Column(Boolean, nullable=False, default=True, comment='Only active instruments are fetched and analysed')
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        {'comment': 'Instruments tracked by the collector.'},
    )

    def __repr__(self):
        return f"<Instrument(id={self.id}, symbol='{self.symbol}', active={self.active})>"


class Timeframe(Base):
    """SQLAlchemy model for a named bar interval (e.g., 5min, 1day)."""
    __tablename__ = 'timeframes'

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(10), unique=True, nullable=False, comment='Interval name as the provider spells it')
    minutes = Column(Integer, nullable=False, comment='Length of one bar in minutes')

    def __repr__(self):
        return f"<Timeframe(id={self.id}, name='{self.name}')>"
