from sqlalchemy import Column, Integer, String, DateTime, Text, JSON, ForeignKey, Index, UniqueConstraint, Numeric
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from laminates.db.database import Base
from laminates.core.constants import UserRole, PriceType
import uuid


def _uuid() -> str:
    return str(uuid.uuid4())


def _iso(value):
    return value.isoformat() if value else None


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=_uuid)
    email = Column(String(255), unique=True, index=True, nullable=False)
    user_name = Column(String(100), nullable=False)
    hashed_password = Column(String(255), nullable=False)
    role = Column(String(20), nullable=False, default=UserRole.EMPLOYEE.value)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN.value

    def __repr__(self):
        return f"<User(id={self.id}, email={self.email}, role={self.role})>"

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "user_name": self.user_name,
            "role": self.role,
        }


class Reference(Base):
    """Referring party (carpenter, dealer, ...) that introduced a customer"""
    __tablename__ = "references"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(100), nullable=False)
    mobile_no = Column(String(15), nullable=True)
    category = Column(String(50), nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("name", "mobile_no", name="uq_references_name_mobile"),
    )

    def __repr__(self):
        return f"<Reference(id={self.id}, name={self.name}, category={self.category})>"

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "mobile_no": self.mobile_no,
            "category": self.category,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class Customer(Base):
    __tablename__ = "customers"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(100), nullable=False)
    mobile_no = Column(String(15), nullable=False)
    address = Column(Text, nullable=True)
    gst_number = Column(String(20), nullable=True)
    reference_id = Column(String(36), ForeignKey("references.id", ondelete="RESTRICT"), nullable=True, index=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    reference = relationship("Reference", lazy="joined")

    __table_args__ = (
        UniqueConstraint("name", "mobile_no", name="uq_customers_name_mobile"),
    )

    def __repr__(self):
        return f"<Customer(id={self.id}, name={self.name}, mobile_no={self.mobile_no})>"

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "mobile_no": self.mobile_no,
            "address": self.address,
            "gst_number": self.gst_number,
            "reference_id": self.reference_id,
            "reference": self.reference.to_dict() if self.reference else None,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class Product(Base):
    __tablename__ = "products"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(100), nullable=False, unique=True)
    description = Column(Text, nullable=True)
    unit = Column(String(20), nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<Product(id={self.id}, name={self.name}, unit={self.unit})>"

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "unit": self.unit,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class Location(Base):
    __tablename__ = "locations"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(100), nullable=False, unique=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<Location(id={self.id}, name={self.name})>"

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class Quotation(Base):
    """
    Priced proposal issued to a customer

    Owns its items: deleting a quotation deletes every item row. ``pdf_path``
    points at the most recently stored PDF and stays untouched when a render
    fails.
    """
    __tablename__ = "quotations"

    id = Column(String(36), primary_key=True, default=_uuid)
    quotation_date = Column(DateTime(timezone=True), nullable=False, index=True)
    customer_id = Column(String(36), ForeignKey("customers.id", ondelete="RESTRICT"), nullable=False, index=True)
    last_shared_date = Column(DateTime(timezone=True), nullable=True)
    remarks = Column(Text, nullable=True)
    price_type = Column(String(20), nullable=False, default=PriceType.EXCLUSIVE_TAX.value)
    pdf_path = Column(String(512), nullable=True)

    created_by = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    customer = relationship("Customer")
    creator = relationship("User", foreign_keys=[created_by])
    items = relationship(
        "Item",
        back_populates="quotation",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Item.position",
    )

    __table_args__ = (
        Index('ix_quotations_created_at', created_at),
    )

    def __repr__(self):
        return f"<Quotation(id={self.id}, customer={self.customer_id}, items={len(self.items)})>"

    def all_image_paths(self):
        """Every blob path referenced by this quotation's items, in item order"""
        paths = []
        for item in self.items:
            paths.extend(item.images or [])
        return paths

    def to_dict(self):
        return {
            "id": self.id,
            "quotation_date": _iso(self.quotation_date),
            "customer_id": self.customer_id,
            "customer": self.customer.to_dict() if self.customer else None,
            "last_shared_date": _iso(self.last_shared_date),
            "remarks": self.remarks,
            "price_type": self.price_type,
            "pdf_path": self.pdf_path,
            "created_by": self.created_by,
            "creator": self.creator.to_dict() if self.creator else None,
            "items": [item.to_dict() for item in self.items],
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class Item(Base):
    __tablename__ = "items"

    id = Column(String(36), primary_key=True, default=_uuid)
    quotation_id = Column(String(36), ForeignKey("quotations.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(String(36), ForeignKey("products.id", ondelete="RESTRICT"), nullable=False, index=True)
    location_id = Column(String(36), ForeignKey("locations.id", ondelete="SET NULL"), nullable=True, index=True)
    position = Column(Integer, nullable=False, default=0)

    description = Column(Text, nullable=True)
    rate = Column(Numeric(10, 2), nullable=False)
    discount = Column(Numeric(10, 2), nullable=True)
    discount_type = Column(String(20), nullable=True)
    unit = Column(String(20), nullable=False)
    images = Column(JSON, nullable=False, default=list)
    quantity = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    quotation = relationship("Quotation", back_populates="items")
    product = relationship("Product")
    location = relationship("Location")

    def __repr__(self):
        return f"<Item(id={self.id}, quotation={self.quotation_id}, product={self.product_id})>"

    def to_dict(self):
        return {
            "id": self.id,
            "quotation_id": self.quotation_id,
            "product_id": self.product_id,
            "product": self.product.to_dict() if self.product else None,
            "location_id": self.location_id,
            "location": self.location.to_dict() if self.location else None,
            "position": self.position,
            "description": self.description,
            "rate": str(self.rate) if self.rate is not None else None,
            "discount": str(self.discount) if self.discount is not None else None,
            "discount_type": self.discount_type,
            "unit": self.unit,
            "images": list(self.images or []),
            "quantity": self.quantity,
        }
