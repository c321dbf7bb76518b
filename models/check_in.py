from sqlalchemy import Column, Integer, String, TIMESTAMP, ForeignKey
from sqlalchemy.orm import relationship
from db.init import Base

class CheckIn(Base):
    """
    One admitted entry. Customer fields are a snapshot taken at admission time,
    so later customer updates never rewrite history.
    """
    __tablename__ = "check_ins"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    customer_id = Column(String(255), ForeignKey("customers.id"), nullable=False, index=True)
    customer_name = Column(String(255))
    phone_number = Column(String(32))
    membership_type = Column(String(50))
    location_id = Column(String(255), nullable=True)
    check_in_time = Column(TIMESTAMP, nullable=False, index=True)

    customer = relationship("Customer", back_populates="check_ins")
