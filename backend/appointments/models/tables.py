from sqlalchemy import CheckConstraint, Column, Float, Index, Integer, Text, text
from sqlalchemy.orm import declarative_base

Base = declarative_base()
metadata = Base.metadata

ACTIVE_ONLY = text("status <> 'CANCELLED'")


class AvailabilityWindows(Base):
    __tablename__ = 'availability_windows'
    __table_args__ = (
        CheckConstraint("type_code IN ('TRYOUT', 'PICKUP')"),
        CheckConstraint("slot_minutes IN (15, 20, 30)"),
        CheckConstraint("start_time < end_time"),
        Index('ix_availability_windows_date_type', 'date', 'type_code'),
    )

    id = Column(Integer, primary_key=True)
    date = Column(Text, nullable=False)  # YYYY-MM-DD
    type_code = Column(Text, nullable=False)
    start_time = Column(Text, nullable=False)  # HH:MM
    end_time = Column(Text, nullable=False)
    slot_minutes = Column(Integer, nullable=False, server_default=text('30'))
    created_at = Column(Text, nullable=False, server_default=text('CURRENT_TIMESTAMP'))


class Appointments(Base):
    __tablename__ = 'appointments'
    __table_args__ = (
        CheckConstraint("type_code IN ('TRYOUT', 'PICKUP', 'SHIPPING')"),
        CheckConstraint(
            "status IN ('CONFIRMED', 'SHIPPED', 'DONE', 'CANCELLED', 'NO_SHOW')"
        ),
        # One live booking per exact slot; cancelled rows free the slot
        Index(
            'uq_appointments_active_slot',
            'type_code', 'date', 'start_time', 'end_time',
            unique=True,
            sqlite_where=ACTIVE_ONLY,
            postgresql_where=ACTIVE_ONLY,
        ),
        Index('ix_appointments_date_type', 'date', 'type_code'),
    )

    id = Column(Integer, primary_key=True)
    type_code = Column(Text, nullable=False)
    date = Column(Text, nullable=False)
    start_time = Column(Text)  # NULL for SHIPPING
    end_time = Column(Text)
    status = Column(Text, nullable=False, server_default=text("'CONFIRMED'"))

    product = Column(Text)
    customer_name = Column(Text, nullable=False)
    customer_email = Column(Text, nullable=False)  # lower-cased
    customer_phone = Column(Text, nullable=False)  # digits only
    customer_id_number = Column(Text)  # digits only
    delivery_method = Column(Text, nullable=False, server_default=text("'IN_PERSON'"))
    notes = Column(Text)

    shipping_address = Column(Text)
    shipping_neighborhood = Column(Text)
    shipping_city = Column(Text)
    shipping_carrier = Column(Text)
    shipping_cost = Column(Float)
    tracking_number = Column(Text)
    shipping_trip_link = Column(Text)
    shipped_at = Column(Text)

    reminded_1h_at = Column(Text)
    reminded_30m_at = Column(Text)

    created_at = Column(Text, nullable=False, server_default=text('CURRENT_TIMESTAMP'))
