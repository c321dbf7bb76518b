from sqlalchemy import Column, Integer, String, Text, TIMESTAMP, JSON
from db.init import Base

class SystemLog(Base):
    __tablename__ = "system_logs"
    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    timestamp = Column(TIMESTAMP, nullable=False, index=True)
    event_type = Column(String(50), nullable=False, index=True)  # check_in, check_in_error, system_error, ...
    message = Column(Text, nullable=False)
    details = Column(JSON, nullable=True)
    severity = Column(String(20), nullable=False, default="info")  # debug, info, warning, error
