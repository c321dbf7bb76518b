from sqlalchemy import Column, String, Date, TIMESTAMP, func
from sqlalchemy.orm import relationship
from db.init import Base

class Customer(Base):
    __tablename__ = "customers"
    id = Column(String(255), primary_key=True, index=True)  # Square customer ID
    name = Column(String(255), nullable=False, default="")
    phone_number = Column(String(32), unique=True, index=True, nullable=True)  # normalized, +<cc><number>
    membership_type = Column(String(50), nullable=False, default="Unknown")  # Subscription Based, Cash Payment Based, Unknown
    next_payment = Column(Date, nullable=True)
    created_at = Column(TIMESTAMP, server_default=func.now())
    updated_at = Column(TIMESTAMP, server_default=func.now(), onupdate=func.now())

    check_ins = relationship("CheckIn", back_populates="customer", order_by="CheckIn.check_in_time.desc()")
