from sqlalchemy import Column, Float, ForeignKey, Integer, Text, text

from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()
metadata = Base.metadata


class Clients(Base):
    __tablename__ = 'clients'

    name = Column(Text, nullable=False)
    email = Column(Text, nullable=False, unique=True)
    id = Column(Integer, primary_key=True)
    phone = Column(Text)
    notes = Column(Text)
    created_at = Column(Text, server_default=text('CURRENT_TIMESTAMP'))

    bookings = relationship('Bookings', back_populates='client')
    coupon_usage = relationship('CouponUsage', back_populates='client')


class Therapists(Base):
    __tablename__ = 'therapists'

    name = Column(Text, nullable=False)
    is_active = Column(Integer, nullable=False, server_default=text('1'))
    id = Column(Integer, primary_key=True)
    email = Column(Text)
    bio = Column(Text)

    availability = relationship('TherapistAvailability', uselist=False, back_populates='therapist')
    bookings = relationship('Bookings', back_populates='therapist')


class TherapistAvailability(Base):
    __tablename__ = 'therapist_availability'

    therapist_id = Column(ForeignKey('therapists.id', ondelete='CASCADE'), nullable=False, unique=True)
    working_days = Column(Text, nullable=False, server_default=text("'[1, 2, 3, 4, 5]'"))
    work_start = Column(Text, nullable=False, server_default=text("'09:00'"))
    work_end = Column(Text, nullable=False, server_default=text("'18:00'"))
    breaks = Column(Text, nullable=False, server_default=text("'[]'"))
    blocked_dates = Column(Text, nullable=False, server_default=text("'[]'"))
    custom_schedule = Column(Text, nullable=False, server_default=text("'[]'"))
    buffer_minutes = Column(Integer, nullable=False, server_default=text('0'))
    min_advance_hours = Column(Integer, nullable=False, server_default=text('2'))
    max_advance_days = Column(Integer, nullable=False, server_default=text('60'))
    id = Column(Integer, primary_key=True)
    updated_at = Column(Text, server_default=text('CURRENT_TIMESTAMP'))

    therapist = relationship('Therapists', back_populates='availability')


class Services(Base):
    __tablename__ = 'services'

    name = Column(Text, nullable=False)
    duration_min = Column(Integer, nullable=False)
    price = Column(Float, nullable=False)
    requires_payment = Column(Integer, nullable=False, server_default=text('1'))
    is_active = Column(Integer, nullable=False, server_default=text('1'))
    id = Column(Integer, primary_key=True)
    description = Column(Text)
    category = Column(Text)

    bookings = relationship('Bookings', back_populates='service')


class Coupons(Base):
    __tablename__ = 'coupons'

    code = Column(Text, nullable=False, unique=True)
    type = Column(Text, nullable=False)
    value = Column(Float, nullable=False)
    valid_from = Column(Text, nullable=False)
    valid_until = Column(Text, nullable=False)
    usage_limit = Column(Integer, nullable=False, server_default=text('1'))
    used_count = Column(Integer, nullable=False, server_default=text('0'))
    status = Column(Text, nullable=False, server_default=text("'active'"))
    id = Column(Integer, primary_key=True)
    service_id = Column(ForeignKey('services.id', ondelete='SET NULL'))
    client_id = Column(ForeignKey('clients.id', ondelete='SET NULL'))
    description = Column(Text)
    created_by = Column(Text)
    created_at = Column(Text, server_default=text('CURRENT_TIMESTAMP'))
    updated_at = Column(Text, server_default=text('CURRENT_TIMESTAMP'))

    usage = relationship('CouponUsage', back_populates='coupon')
    bookings = relationship('Bookings', back_populates='coupon')


class Bookings(Base):
    __tablename__ = 'bookings'

    client_id = Column(ForeignKey('clients.id', ondelete='CASCADE'), nullable=False)
    service_id = Column(ForeignKey('services.id'), nullable=False)
    therapist_id = Column(ForeignKey('therapists.id'), nullable=False)
    date_start = Column(Text, nullable=False)
    status = Column(Text, nullable=False, server_default=text("'pending'"))
    payment_status = Column(Text, nullable=False, server_default=text("'pending'"))
    reminder_sent = Column(Integer, nullable=False, server_default=text('0'))
    created_at = Column(Text, nullable=False, server_default=text('CURRENT_TIMESTAMP'))
    updated_at = Column(Text, nullable=False, server_default=text('CURRENT_TIMESTAMP'))
    id = Column(Integer, primary_key=True)
    notes = Column(Text)
    final_price = Column(Float)
    cancel_reason = Column(Text)
    coupon_id = Column(ForeignKey('coupons.id', ondelete='SET NULL'))
    discount_amount = Column(Float, nullable=False, server_default=text('0'))
    # pending reschedule proposal; all NULL when there is none
    reschedule_new_date = Column(Text)
    reschedule_reason = Column(Text)
    reschedule_requested_at = Column(Text)
    reschedule_response = Column(Text)

    client = relationship('Clients', back_populates='bookings')
    service = relationship('Services', back_populates='bookings')
    therapist = relationship('Therapists', back_populates='bookings')
    coupon = relationship('Coupons', back_populates='bookings')
    payments = relationship('Payments', back_populates='booking')


class CouponUsage(Base):
    __tablename__ = 'coupon_usage'

    coupon_id = Column(ForeignKey('coupons.id'), nullable=False)
    booking_id = Column(ForeignKey('bookings.id'), nullable=False)
    used_by = Column(ForeignKey('clients.id'), nullable=False)
    discount_applied = Column(Float, nullable=False)
    id = Column(Integer, primary_key=True)
    used_at = Column(Text, nullable=False, server_default=text('CURRENT_TIMESTAMP'))

    coupon = relationship('Coupons', back_populates='usage')
    client = relationship('Clients', back_populates='coupon_usage')


class Payments(Base):
    __tablename__ = 'payments'

    transaction_id = Column(Text, nullable=False, unique=True)
    status = Column(Text, nullable=False, server_default=text("'pending'"))
    id = Column(Integer, primary_key=True)
    booking_id = Column(ForeignKey('bookings.id', ondelete='SET NULL'))
    amount = Column(Float)
    method = Column(Text)
    created_at = Column(Text, nullable=False, server_default=text('CURRENT_TIMESTAMP'))
    updated_at = Column(Text, nullable=False, server_default=text('CURRENT_TIMESTAMP'))

    booking = relationship('Bookings', back_populates='payments')
