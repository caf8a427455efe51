"""
Reference, customer, product and location endpoints
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from laminates.api.schemas import (
    CustomerCreate, CustomerUpdate, LocationCreate, LocationUpdate, ProductCreate, ProductUpdate,
    ReferenceCreate, ReferenceUpdate, envelope, model_fields, paginated,
)
from laminates.auth.dependencies import get_current_user, require_admin
from laminates.core.constants import MAX_PAGE_LIMIT, ProductUnit, ReferenceCategory
from laminates.core.pagination import PaginationParams
from laminates.db.database import get_db
from laminates.db.models import User
from laminates.services.repositories import (
    CustomerRepository, LocationRepository, ProductRepository, ReferenceRepository,
)

logger = logging.getLogger(__name__)

references_router = APIRouter(prefix="/api/v1/references", tags=["References"])
customers_router = APIRouter(prefix="/api/v1/customers", tags=["Customers"])
products_router = APIRouter(prefix="/api/v1/products", tags=["Products"])
locations_router = APIRouter(prefix="/api/v1/locations", tags=["Locations"])


def _params(page: int, limit: int) -> PaginationParams:
    return PaginationParams(page=page, limit=limit)


# References

@references_router.get("/categories")
async def list_reference_categories(current_user: User = Depends(get_current_user)):
    categories = [category.value for category in ReferenceCategory]
    return envelope("Reference categories retrieved successfully", {"categories": categories,
                                                                    "count": len(categories)})


@references_router.get("")
async def list_references(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=MAX_PAGE_LIMIT),
    search: Optional[str] = Query(None),
    category: Optional[ReferenceCategory] = Query(None),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    result = ReferenceRepository(db).find_all(
        _params(page, limit), search=search, filters={"category": category.value if category else None}
    )
    return paginated("References retrieved successfully", "references",
                     [reference.to_dict() for reference in result.items], result.pagination)


@references_router.post("", status_code=201)
async def create_reference(payload: ReferenceCreate, current_user: User = Depends(get_current_user),
                           db: Session = Depends(get_db)):
    reference = ReferenceRepository(db).create(**model_fields(payload))
    return envelope("Reference created successfully", reference.to_dict())


@references_router.get("/{reference_id}")
async def get_reference(reference_id: str, current_user: User = Depends(get_current_user),
                        db: Session = Depends(get_db)):
    return envelope("Reference retrieved successfully", ReferenceRepository(db).find_by_id(reference_id).to_dict())


@references_router.put("/{reference_id}")
async def update_reference(reference_id: str, payload: ReferenceUpdate,
                           current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    reference = ReferenceRepository(db).update(reference_id, **model_fields(payload))
    return envelope("Reference updated successfully", reference.to_dict())


@references_router.delete("/{reference_id}")
async def delete_reference(reference_id: str, current_user: User = Depends(require_admin),
                           db: Session = Depends(get_db)):
    ReferenceRepository(db).delete(reference_id)
    return envelope("Reference deleted successfully")


# Customers

@customers_router.get("")
async def list_customers(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=MAX_PAGE_LIMIT),
    search: Optional[str] = Query(None),
    reference_id: Optional[str] = Query(None),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    result = CustomerRepository(db).find_all(
        _params(page, limit), search=search, filters={"reference_id": reference_id}
    )
    return paginated("Customers retrieved successfully", "customers",
                     [customer.to_dict() for customer in result.items], result.pagination)


@customers_router.post("", status_code=201)
async def create_customer(payload: CustomerCreate, current_user: User = Depends(get_current_user),
                          db: Session = Depends(get_db)):
    customer = CustomerRepository(db).create(**model_fields(payload))
    return envelope("Customer created successfully", customer.to_dict())


@customers_router.get("/{customer_id}")
async def get_customer(customer_id: str, current_user: User = Depends(get_current_user),
                       db: Session = Depends(get_db)):
    return envelope("Customer retrieved successfully", CustomerRepository(db).find_by_id(customer_id).to_dict())


@customers_router.put("/{customer_id}")
async def update_customer(customer_id: str, payload: CustomerUpdate,
                          current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    customer = CustomerRepository(db).update(customer_id, **model_fields(payload))
    return envelope("Customer updated successfully", customer.to_dict())


@customers_router.delete("/{customer_id}")
async def delete_customer(customer_id: str, current_user: User = Depends(require_admin),
                          db: Session = Depends(get_db)):
    CustomerRepository(db).delete(customer_id)
    return envelope("Customer deleted successfully")


# Products

@products_router.get("/units")
async def list_product_units(current_user: User = Depends(get_current_user)):
    units = [unit.value for unit in ProductUnit]
    return envelope("Product units retrieved successfully", {"units": units, "count": len(units)})


@products_router.get("")
async def list_products(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=MAX_PAGE_LIMIT),
    search: Optional[str] = Query(None),
    unit: Optional[ProductUnit] = Query(None),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    result = ProductRepository(db).find_all(
        _params(page, limit), search=search, filters={"unit": unit.value if unit else None}
    )
    return paginated("Products retrieved successfully", "products",
                     [product.to_dict() for product in result.items], result.pagination)


@products_router.post("", status_code=201)
async def create_product(payload: ProductCreate, current_user: User = Depends(get_current_user),
                         db: Session = Depends(get_db)):
    product = ProductRepository(db).create(**model_fields(payload))
    return envelope("Product created successfully", product.to_dict())


@products_router.get("/{product_id}")
async def get_product(product_id: str, current_user: User = Depends(get_current_user),
                      db: Session = Depends(get_db)):
    return envelope("Product retrieved successfully", ProductRepository(db).find_by_id(product_id).to_dict())


@products_router.put("/{product_id}")
async def update_product(product_id: str, payload: ProductUpdate,
                         current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    product = ProductRepository(db).update(product_id, **model_fields(payload))
    return envelope("Product updated successfully", product.to_dict())


@products_router.delete("/{product_id}")
async def delete_product(product_id: str, current_user: User = Depends(require_admin),
                         db: Session = Depends(get_db)):
    ProductRepository(db).delete(product_id)
    return envelope("Product deleted successfully")


# Locations

@locations_router.get("")
async def list_locations(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=MAX_PAGE_LIMIT),
    search: Optional[str] = Query(None),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    result = LocationRepository(db).find_all(_params(page, limit), search=search)
    return paginated("Locations retrieved successfully", "locations",
                     [location.to_dict() for location in result.items], result.pagination)


@locations_router.post("", status_code=201)
async def create_location(payload: LocationCreate, current_user: User = Depends(get_current_user),
                          db: Session = Depends(get_db)):
    location = LocationRepository(db).create(**model_fields(payload))
    return envelope("Location created successfully", location.to_dict())


@locations_router.get("/{location_id}")
async def get_location(location_id: str, current_user: User = Depends(get_current_user),
                       db: Session = Depends(get_db)):
    return envelope("Location retrieved successfully", LocationRepository(db).find_by_id(location_id).to_dict())


@locations_router.put("/{location_id}")
async def update_location(location_id: str, payload: LocationUpdate,
                          current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    location = LocationRepository(db).update(location_id, **model_fields(payload))
    return envelope("Location updated successfully", location.to_dict())


@locations_router.delete("/{location_id}")
async def delete_location(location_id: str, current_user: User = Depends(require_admin),
                          db: Session = Depends(get_db)):
    LocationRepository(db).delete(location_id)
    return envelope("Location deleted successfully")
