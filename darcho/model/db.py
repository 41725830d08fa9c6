from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy import (
    Column,
    Integer,
    String,
    Float,
    Boolean,
    Text,
    JSON,
    ForeignKey,
    Index,
)

from ..helpers import now_ts


Base = declarative_base()


# Order.status values. One table holds cart lines, favorites and placed
# orders; "placed" means anything that is not cart or favorite.
ST_CART = "cart"
ST_FAVORITE = "favorite"
ST_PENDING = "pending"
ST_CONFIRMED = "confirmed"
ST_PROCESSING = "processing"
ST_SHIPPED = "shipped"
ST_DELIVERED = "delivered"
ST_CANCELLED = "cancelled"

NOT_PLACED = (ST_CART, ST_FAVORITE)
PLACED_STATUSES = (
    ST_PENDING, ST_CONFIRMED, ST_PROCESSING, ST_SHIPPED, ST_DELIVERED,
    ST_CANCELLED,
)
ACTIVE_STATUSES = (ST_PENDING, ST_CONFIRMED, ST_PROCESSING)

# Product.status values
P_AVAILABLE = "available"
P_SOLD_OUT = "sold_out"
P_ARCHIVED = "archived"
PRODUCT_STATUSES = (P_AVAILABLE, P_SOLD_OUT, P_ARCHIVED)

ROLE_FARMER = "farmer"
ROLE_BUYER = "buyer"
ROLE_ADMIN = "admin"


# ----------------------------
# ORM models
# ----------------------------
class User(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True)
    email = Column(String(255), nullable=True, unique=True)
    phone = Column(String(32), nullable=False, unique=True)
    password_hash = Column(String(255), nullable=False)
    # farmer | buyer | admin
    role = Column(String(16), nullable=False)
    full_name = Column(String(255), nullable=False)
    residence = Column(String(255), nullable=True)
    region = Column(String(255), nullable=True)
    is_verified = Column(Boolean, nullable=False, default=False)
    created_at = Column(Float, nullable=False, default=now_ts)
    updated_at = Column(Float, nullable=False, default=now_ts,
                        onupdate=now_ts)

    farmer = relationship("Farmer", back_populates="user", uselist=False)
    buyer = relationship("Buyer", back_populates="user", uselist=False)


class Farmer(Base):
    __tablename__ = "farmers"
    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"),
                     nullable=False, unique=True)
    farm_name = Column(String(255), nullable=True)
    region = Column(String(255), nullable=True)
    residence = Column(String(255), nullable=True)
    farm_size = Column(String(64), nullable=True)
    years_farming = Column(Integer, nullable=True)
    certifications = Column(JSON, nullable=False, default=list)
    avg_rating = Column(Float, nullable=True)
    response_time_hours = Column(Integer, nullable=True)
    profile_image_url = Column(String(1024), nullable=True)
    join_date = Column(Float, nullable=False, default=now_ts)
    updated_at = Column(Float, nullable=False, default=now_ts,
                        onupdate=now_ts)

    user = relationship("User", back_populates="farmer")


class Buyer(Base):
    __tablename__ = "buyers"
    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"),
                     nullable=False, unique=True)
    company_name = Column(String(255), nullable=True)
    business_type = Column(String(255), nullable=True)
    location = Column(String(255), nullable=True)
    # exporter | roaster | importer | ...
    buyer_type = Column(String(64), nullable=True)
    website = Column(String(1024), nullable=True)
    tax_id = Column(String(64), nullable=True)
    annual_purchase_capacity = Column(Float, nullable=True)
    preferred_regions = Column(JSON, nullable=False, default=list)
    created_at = Column(Float, nullable=False, default=now_ts)
    updated_at = Column(Float, nullable=False, default=now_ts,
                        onupdate=now_ts)

    user = relationship("User", back_populates="buyer")


class Product(Base):
    __tablename__ = "products"
    id = Column(Integer, primary_key=True)
    farmer_id = Column(Integer, ForeignKey("farmers.id", ondelete="CASCADE"),
                       nullable=False, index=True)
    name = Column(String(255), nullable=False)
    grade = Column(String(32), nullable=True)
    category = Column(String(128), nullable=True)
    quantity = Column(Float, nullable=False, default=0.0)
    unit = Column(String(16), nullable=False, default="kg")
    price_per_unit = Column(Float, nullable=False)  # ETB
    description = Column(Text, nullable=True)
    origin_region = Column(String(255), nullable=True)
    altitude = Column(String(64), nullable=True)
    harvest_date = Column(Float, nullable=True)
    processing_method = Column(String(64), nullable=True)
    certifications = Column(JSON, nullable=False, default=list)
    moisture_content = Column(Float, nullable=True)
    bean_size = Column(String(64), nullable=True)
    cupping_score = Column(Float, nullable=True)
    image_urls = Column(JSON, nullable=False, default=list)
    # available | sold_out | archived
    status = Column(String(16), nullable=False, default=P_AVAILABLE)
    created_at = Column(Float, nullable=False, default=now_ts)
    updated_at = Column(Float, nullable=False, default=now_ts,
                        onupdate=now_ts)

    farmer = relationship("Farmer")


class Order(Base):
    __tablename__ = "orders"
    id = Column(Integer, primary_key=True)
    order_number = Column(String(64), nullable=False, unique=True)
    product_id = Column(Integer,
                        ForeignKey("products.id", ondelete="SET NULL"),
                        nullable=True)
    buyer_id = Column(Integer, ForeignKey("buyers.id", ondelete="CASCADE"),
                      nullable=False)
    farmer_id = Column(Integer, ForeignKey("farmers.id", ondelete="CASCADE"),
                       nullable=False)
    quantity = Column(Float, nullable=False, default=0.0)
    unit_price = Column(Float, nullable=False, default=0.0)
    total_price = Column(Float, nullable=False, default=0.0)

    # cart | favorite | pending | confirmed | processing | shipped |
    # delivered | cancelled
    status = Column(String(16), nullable=False, default=ST_CART)
    delivery_status = Column(String(32), nullable=False, default="pending")
    payment_status = Column(String(32), nullable=False, default="pending")
    payment_method = Column(String(32), nullable=True)
    shipping_address = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)

    order_date = Column(Float, nullable=False, default=now_ts)
    confirmed_date = Column(Float, nullable=True)
    shipped_date = Column(Float, nullable=True)
    delivered_date = Column(Float, nullable=True)
    created_at = Column(Float, nullable=False, default=now_ts)
    updated_at = Column(Float, nullable=False, default=now_ts,
                        onupdate=now_ts)

    product = relationship("Product")
    buyer = relationship("Buyer")
    farmer = relationship("Farmer")

    __table_args__ = (
        Index("ix_orders_buyer_status", "buyer_id", "status"),
        Index("ix_orders_farmer_status", "farmer_id", "status"),
    )


class Message(Base):
    __tablename__ = "messages"
    id = Column(Integer, primary_key=True)
    sender_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"),
                       nullable=False, index=True)
    receiver_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"),
                         nullable=False, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="SET NULL"),
                      nullable=True)
    message = Column(Text, nullable=False)
    is_read = Column(Boolean, nullable=False, default=False)
    created_at = Column(Float, nullable=False, default=now_ts)

    sender = relationship("User", foreign_keys=[sender_id])
    receiver = relationship("User", foreign_keys=[receiver_id])
    order = relationship("Order")


class AuthSession(Base):
    __tablename__ = "auth_sessions"
    token = Column(String(64), primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"),
                     nullable=False, index=True)
    role = Column(String(16), nullable=False)
    created_at = Column(Float, nullable=False)
    expires_at = Column(Float, nullable=False, index=True)
