# report_compiler/warehouse/models.py
"""Operational warehouse tables exposed to the report builder."""

from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import relationship

from report_compiler.core.database import DWBase


class Product(DWBase):
    """Sellable products and their list price."""

    __tablename__ = "products"

    id = Column(Integer, primary_key=True)
    name = Column(String(120), nullable=False)
    category = Column(String(60), nullable=True)
    price = Column(Numeric(10, 2), nullable=False)
    in_stock = Column(Boolean, nullable=False, default=True)


class Order(DWBase):
    """Customer orders."""

    __tablename__ = "orders"

    id = Column(Integer, primary_key=True)
    customer_name = Column(String(120), nullable=True)
    status = Column(String(30), nullable=False, default="open")
    total = Column(Numeric(12, 2), nullable=False)
    discount_rate = Column(Numeric(5, 4), nullable=True)
    is_paid = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False)

    items = relationship("OrderItem", back_populates="order")
    refunds = relationship("Refund", back_populates="order")


class OrderItem(DWBase):
    """Order lines."""

    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(10, 2), nullable=False)

    order = relationship("Order", back_populates="items")


class Refund(DWBase):
    """Refunds issued against orders."""

    __tablename__ = "refunds"

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    reason = Column(String(255), nullable=True)
    refunded_on = Column(Date, nullable=True)

    order = relationship("Order", back_populates="refunds")
