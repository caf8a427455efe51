"""
Persistence access for master data and quotations

Repositories translate SQLAlchemy failures into the service error taxonomy:
missing rows become NotFoundError, unique or foreign-key violations become
ConflictError. Every write commits or rolls back before returning.
"""
import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload, selectinload

from laminates.core.errors import ConflictError, NotFoundError
from laminates.core.pagination import PaginatedResult, PaginationParams, paginate_query
from laminates.db.models import Customer, Item, Location, Product, Quotation, Reference, User

logger = logging.getLogger(__name__)


class EntityRepository:
    """CRUD for a single-table entity"""

    search_fields: Sequence[str] = ("name",)

    def __init__(self, db: Session, model, entity_name: Optional[str] = None):
        self.db = db
        self.model = model
        self.entity_name = entity_name or model.__name__

    def get(self, entity_id: str):
        return self.db.query(self.model).filter(self.model.id == entity_id).first()

    def find_by_id(self, entity_id: str):
        entity = self.get(entity_id)
        if entity is None:
            raise NotFoundError(
                f"{self.entity_name} not found",
                details={"entity": self.entity_name, "id": entity_id},
            )
        return entity

    def find_all(
        self,
        params: Optional[PaginationParams] = None,
        search: Optional[str] = None,
        filters: Optional[Dict[str, Any]] = None,
    ) -> PaginatedResult:
        params = params or PaginationParams()
        query = self.db.query(self.model)

        for field, value in (filters or {}).items():
            if value is not None:
                query = query.filter(getattr(self.model, field) == value)

        if search:
            pattern = f"%{search.strip()}%"
            query = query.filter(or_(*[getattr(self.model, f).ilike(pattern) for f in self.search_fields]))

        query = query.order_by(self.model.created_at.desc(), self.model.id)
        return paginate_query(query, params)

    def create(self, **fields):
        entity = self.model(**fields)
        try:
            self.db.add(entity)
            self.db.commit()
            self.db.refresh(entity)
        except IntegrityError as e:
            self.db.rollback()
            raise self._conflict(e, "create")
        logger.info(f"{self.entity_name} created: {entity.id}")
        return entity

    def update(self, entity_id: str, **fields):
        entity = self.find_by_id(entity_id)
        for field, value in fields.items():
            setattr(entity, field, value)
        try:
            self.db.commit()
            self.db.refresh(entity)
        except IntegrityError as e:
            self.db.rollback()
            raise self._conflict(e, "update")
        return entity

    def delete(self, entity_id: str) -> None:
        entity = self.find_by_id(entity_id)
        try:
            self.db.delete(entity)
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise ConflictError(
                f"{self.entity_name} is in use and cannot be deleted",
                details={"entity": self.entity_name, "id": entity_id},
            ) from e
        logger.info(f"{self.entity_name} deleted: {entity_id}")

    def _conflict(self, error: IntegrityError, operation: str) -> ConflictError:
        logger.warning(f"{self.entity_name} {operation} violated a constraint: {error.orig}")
        return ConflictError(
            f"{self.entity_name} already exists",
            details={"entity": self.entity_name, "operation": operation},
        )


class ReferenceRepository(EntityRepository):
    search_fields = ("name", "mobile_no")

    def __init__(self, db: Session):
        super().__init__(db, Reference, "Reference")

    def customer_count(self, reference_id: str) -> int:
        return self.db.query(Customer).filter(Customer.reference_id == reference_id).count()

    def delete(self, reference_id: str) -> None:
        """Refuse to delete while customers point at the reference, reporting how many"""
        self.find_by_id(reference_id)
        count = self.customer_count(reference_id)
        if count > 0:
            raise ConflictError(
                "Cannot delete reference. It has associated customers",
                details={"entity": "Reference", "id": reference_id, "dependents": "customers", "count": count},
            )
        super().delete(reference_id)


class CustomerRepository(EntityRepository):
    search_fields = ("name", "mobile_no")

    def __init__(self, db: Session):
        super().__init__(db, Customer, "Customer")

    def _check_reference(self, reference_id: Optional[str]) -> None:
        if reference_id and not self.db.query(Reference.id).filter(Reference.id == reference_id).first():
            raise NotFoundError("Reference not found", details={"entity": "Reference", "id": reference_id})

    def create(self, **fields):
        self._check_reference(fields.get("reference_id"))
        return super().create(**fields)

    def update(self, entity_id: str, **fields):
        self._check_reference(fields.get("reference_id"))
        return super().update(entity_id, **fields)


class ProductRepository(EntityRepository):
    search_fields = ("name", "description")

    def __init__(self, db: Session):
        super().__init__(db, Product, "Product")


class LocationRepository(EntityRepository):
    def __init__(self, db: Session):
        super().__init__(db, Location, "Location")


class UserRepository(EntityRepository):
    search_fields = ("user_name", "email")

    def __init__(self, db: Session):
        super().__init__(db, User, "User")


class QuotationRepository:
    """Quotation rows together with their items"""

    def __init__(self, db: Session):
        self.db = db

    def _graph_query(self):
        return self.db.query(Quotation).options(
            joinedload(Quotation.customer).joinedload(Customer.reference),
            joinedload(Quotation.creator),
            joinedload(Quotation.items).joinedload(Item.product),
            joinedload(Quotation.items).joinedload(Item.location),
        )

    def load_graph(self, quotation_id: str) -> Optional[Quotation]:
        """Quotation with customer/reference, creator and items/product/location in one read"""
        return (
            self._graph_query()
            .populate_existing()
            .filter(Quotation.id == quotation_id)
            .first()
        )

    def get(self, quotation_id: str) -> Optional[Quotation]:
        return self.db.query(Quotation).filter(Quotation.id == quotation_id).first()

    def list(
        self,
        params: PaginationParams,
        customer_id: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> PaginatedResult:
        query = self.db.query(Quotation).options(
            joinedload(Quotation.customer).joinedload(Customer.reference),
            joinedload(Quotation.creator),
            selectinload(Quotation.items).joinedload(Item.product),
            selectinload(Quotation.items).joinedload(Item.location),
        )
        if customer_id:
            query = query.filter(Quotation.customer_id == customer_id)
        if start_date:
            query = query.filter(Quotation.quotation_date >= start_date)
        if end_date:
            query = query.filter(Quotation.quotation_date <= end_date)
        query = query.order_by(Quotation.created_at.desc(), Quotation.id)
        return paginate_query(query, params)

    def customer_exists(self, customer_id: str) -> bool:
        return self.db.query(Customer.id).filter(Customer.id == customer_id).first() is not None

    def products_by_ids(self, product_ids: Iterable[str]) -> Dict[str, Product]:
        ids = list(set(product_ids))
        if not ids:
            return {}
        products = self.db.query(Product).filter(Product.id.in_(ids)).all()
        return {product.id: product for product in products}

    def locations_by_ids(self, location_ids: Iterable[str]) -> Dict[str, Location]:
        ids = [location_id for location_id in set(location_ids) if location_id]
        if not ids:
            return {}
        locations = self.db.query(Location).filter(Location.id.in_(ids)).all()
        return {location.id: location for location in locations}

    def insert_with_items(self, quotation: Quotation, items: List[Item]) -> Quotation:
        """Insert the quotation and every item in one transaction"""
        try:
            for position, item in enumerate(items):
                item.position = position
                quotation.items.append(item)
            self.db.add(quotation)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return quotation

    def replace_items(self, quotation: Quotation, fields: Dict[str, Any], items: Optional[List[Item]]) -> Quotation:
        """
        Patch top-level fields and, when ``items`` is given, delete every
        existing item and insert the new set; all in one transaction.
        """
        try:
            for field, value in fields.items():
                setattr(quotation, field, value)
            if items is not None:
                quotation.items.clear()
                self.db.flush()
                for position, item in enumerate(items):
                    item.position = position
                    quotation.items.append(item)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return quotation

    def set_pdf_path(self, quotation: Quotation, pdf_path: Optional[str]) -> None:
        try:
            quotation.pdf_path = pdf_path
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

    def mark_shared(self, quotation: Quotation, shared_at: datetime) -> None:
        try:
            quotation.last_shared_date = shared_at
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

    def delete(self, quotation: Quotation) -> None:
        try:
            self.db.delete(quotation)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
