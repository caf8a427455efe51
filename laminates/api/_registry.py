"""
Router registry for all API endpoints
"""
from laminates.api import master_data, quotations

ROUTERS = [
    quotations.router,
    quotations.public_router,
    master_data.references_router,
    master_data.customers_router,
    master_data.products_router,
    master_data.locations_router,
]
