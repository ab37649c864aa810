from datetime import datetime

from sqlalchemy import Column, DateTime, Float, ForeignKey, Index, Integer, UniqueConstraint

from .base import Base


class PriceBar(Base):
    """SQLAlchemy model for one OHLCV bar of one instrument in one timeframe."""
    __tablename__ = 'price_bars'

    id = Column(Integer, primary_key=True, autoincrement=True)
    instrument_id = Column(Integer, ForeignKey('instruments.id'), nullable=False)
    timeframe_id = Column(Integer, ForeignKey('timeframes.id'), nullable=False)
    timestamp = Column(DateTime, nullable=False, comment='Bar open time in exchange local time')
    open = Column(Float, nullable=False)
    high = Column(Float, nullable=False)
    low = Column(Float, nullable=False)
    close = Column(Float, nullable=False)
    volume = Column(Float, nullable=False, default=0)
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint('instrument_id', 'timeframe_id', 'timestamp', name='uq_price_bars_instrument_timeframe_ts'),
        Index('idx_price_bars_timestamp', 'timestamp'),
    )

    def __repr__(self):
        return (f"<PriceBar(instrument_id={self.instrument_id}, timeframe_id={self.timeframe_id}, "
                f"timestamp='{self.timestamp}', close={self.close}, volume={self.volume})>")
