"""
Input validation rules for catalog and checkout data.
"""

import re
from decimal import Decimal
from typing import Dict, List, Optional

from storefront.exceptions import ValidationError

SKU_PATTERN = re.compile(r"^[A-Z0-9_-]{3,50}$")
SLUG_PATTERN = re.compile(r"^[a-z0-9-]{3,100}$")
EMAIL_PATTERN = re.compile(r"^[A-Za-z0-9+_.-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}$")
PHONE_PATTERN = re.compile(r"^\+?[1-9]\d{1,14}$")

MAX_PRICE = Decimal("999999.99")
MAX_NAME_LENGTH = 255
MAX_DESCRIPTION_LENGTH = 5000
MAX_QUANTITY = 10000

FieldErrors = List[Dict[str, str]]


def _error(errors: FieldErrors, field: str, message: str) -> None:
    errors.append({"field": field, "message": message})


def validate_product_data(
    name: Optional[str],
    slug: Optional[str],
    price: Optional[Decimal],
    sku: Optional[str] = None,
    description: Optional[str] = None,
    stock_quantity: int = 0,
) -> FieldErrors:
    errors: FieldErrors = []

    if not name or not name.strip():
        _error(errors, "name", "Product name is required")
    elif len(name) > MAX_NAME_LENGTH:
        _error(errors, "name", f"Product name cannot exceed {MAX_NAME_LENGTH} characters")

    if not slug or not SLUG_PATTERN.match(slug):
        _error(errors, "slug", "Slug must be 3-100 lowercase letters, digits or hyphens")

    if sku is not None and not SKU_PATTERN.match(sku):
        _error(errors, "sku", "SKU must be 3-50 uppercase letters, digits, hyphens or underscores")

    if price is None:
        _error(errors, "price", "Price is required")
    elif price < 0 or price > MAX_PRICE:
        _error(errors, "price", f"Price must be between 0 and {MAX_PRICE}")

    if description is not None and len(description) > MAX_DESCRIPTION_LENGTH:
        _error(errors, "description", f"Description cannot exceed {MAX_DESCRIPTION_LENGTH} characters")

    if stock_quantity is None or stock_quantity < 0:
        _error(errors, "stock_quantity", "Stock quantity cannot be negative")

    return errors


def validate_variant_data(sku: Optional[str], name: Optional[str], price: Optional[Decimal],
                          stock_quantity: int = 0) -> FieldErrors:
    errors: FieldErrors = []

    if not sku or len(sku) > 100:
        _error(errors, "sku", "Variant SKU is required and cannot exceed 100 characters")
    if not name or len(name) > MAX_NAME_LENGTH:
        _error(errors, "name", f"Variant name is required and cannot exceed {MAX_NAME_LENGTH} characters")
    if price is None or price <= 0 or price > MAX_PRICE:
        _error(errors, "price", f"Variant price must be greater than 0 and at most {MAX_PRICE}")
    if stock_quantity < 0:
        _error(errors, "stock_quantity", "Stock quantity cannot be negative")

    return errors


def validate_quantity(quantity: Optional[int]) -> FieldErrors:
    errors: FieldErrors = []
    if quantity is None or quantity < 1:
        _error(errors, "quantity", "Quantity must be at least 1")
    elif quantity > MAX_QUANTITY:
        _error(errors, "quantity", f"Quantity cannot exceed {MAX_QUANTITY}")
    return errors


def validate_contact(email: Optional[str], phone: Optional[str] = None) -> FieldErrors:
    errors: FieldErrors = []
    if not email or not EMAIL_PATTERN.match(email):
        _error(errors, "email", "A valid email address is required")
    if phone and not PHONE_PATTERN.match(phone):
        _error(errors, "phone", "Phone number must be in international format")
    return errors


def validate_category_data(name: Optional[str], slug: Optional[str],
                           description: Optional[str] = None) -> FieldErrors:
    errors: FieldErrors = []
    if not name or not name.strip():
        _error(errors, "name", "Category name is required")
    elif len(name) > MAX_NAME_LENGTH:
        _error(errors, "name", f"Category name cannot exceed {MAX_NAME_LENGTH} characters")
    if not slug or not SLUG_PATTERN.match(slug):
        _error(errors, "slug", "Slug must be 3-100 lowercase letters, digits or hyphens")
    if description is not None and len(description) > MAX_DESCRIPTION_LENGTH:
        _error(errors, "description", f"Description cannot exceed {MAX_DESCRIPTION_LENGTH} characters")
    return errors


def validate_carousel_data(name: Optional[str], slug: Optional[str], max_items: Optional[int] = None) -> FieldErrors:
    errors: FieldErrors = []
    if not name or not name.strip():
        _error(errors, "name", "Carousel name is required")
    elif len(name) > MAX_NAME_LENGTH:
        _error(errors, "name", f"Carousel name cannot exceed {MAX_NAME_LENGTH} characters")
    if not slug or not SLUG_PATTERN.match(slug):
        _error(errors, "slug", "Slug must be 3-100 lowercase letters, digits or hyphens")
    if max_items is not None and max_items < 1:
        _error(errors, "max_items", "A carousel must show at least one item")
    return errors


def ensure_valid(errors: FieldErrors) -> None:
    if errors:
        raise ValidationError(errors)
