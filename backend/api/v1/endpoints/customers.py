from typing import List, Optional
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from ....core.dependencies import (
    get_db,
    get_current_user,
    get_current_staff_user,
    get_current_admin_user,
    ensure_customer_access,
    PaginationParams,
)
from ....models.enums import CustomerStatus
from ....models.user import User
from ....schemas.base import PaginatedResponse, MessageResponse
from ....schemas.customer import (
    Customer,
    CustomerCreate,
    CustomerUpdate,
    CustomerAddress,
    CustomerAddressCreate,
    CustomerSummary,
)
from ....services.customer_service import CustomerService

router = APIRouter()


@router.get("/", response_model=PaginatedResponse[Customer])
async def list_customers(
    search: Optional[str] = Query(None),
    city: Optional[str] = Query(None),
    customer_status: Optional[CustomerStatus] = Query(None, alias="status"),
    pagination: PaginationParams = Depends(),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_staff_user)
):
    """
    Get paginated list of customers with filtering options
    """
    return CustomerService(db).search_customers(
        search_term=search,
        city=city,
        status=customer_status,
        skip=pagination.offset,
        limit=pagination.size,
    )


@router.post("/", response_model=Customer, status_code=status.HTTP_201_CREATED)
async def create_customer(
    customer_data: CustomerCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_staff_user)
):
    return CustomerService(db).create_customer(customer_data, actor=current_user.username)


@router.get("/code/{customer_code}", response_model=Customer)
async def get_customer_by_code(
    customer_code: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_staff_user)
):
    return CustomerService(db).get_customer_by_code(customer_code)


@router.get("/{customer_id}", response_model=Customer)
async def get_customer(
    customer_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    ensure_customer_access(current_user, customer_id)
    return CustomerService(db).get_customer(customer_id)


@router.put("/{customer_id}", response_model=Customer)
async def update_customer(
    customer_id: int,
    customer_data: CustomerUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_staff_user)
):
    return CustomerService(db).update_customer(customer_id, customer_data, actor=current_user.username)


@router.delete("/{customer_id}", response_model=MessageResponse)
async def delete_customer(
    customer_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_admin_user)
):
    """
    Soft delete a customer without open orders
    """
    customer = CustomerService(db).delete_customer(customer_id, actor=current_user.username)
    return {"message": f"Customer {customer.customer_code} deleted"}


@router.get("/{customer_id}/summary", response_model=CustomerSummary)
async def get_customer_summary(
    customer_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Order totals, outstanding balance, loyalty tier and credit summary
    """
    ensure_customer_access(current_user, customer_id)
    return CustomerService(db).get_customer_summary(customer_id)


# Addresses
@router.get("/{customer_id}/addresses", response_model=List[CustomerAddress])
async def list_addresses(
    customer_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    ensure_customer_access(current_user, customer_id)
    return CustomerService(db).list_addresses(customer_id)


@router.post("/{customer_id}/addresses", response_model=CustomerAddress, status_code=status.HTTP_201_CREATED)
async def add_address(
    customer_id: int,
    address_data: CustomerAddressCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    ensure_customer_access(current_user, customer_id)
    return CustomerService(db).add_address(customer_id, address_data)


@router.put("/{customer_id}/addresses/{address_id}/default", response_model=CustomerAddress)
async def set_default_address(
    customer_id: int,
    address_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    ensure_customer_access(current_user, customer_id)
    return CustomerService(db).set_default_address(customer_id, address_id)


@router.delete("/{customer_id}/addresses/{address_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_address(
    customer_id: int,
    address_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    ensure_customer_access(current_user, customer_id)
    CustomerService(db).remove_address(customer_id, address_id)
