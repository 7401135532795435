from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional

from .catalog import CatalogProduct


@dataclass
class OrderLine:
    product_id: str
    name: str
    sku: Optional[str]
    unit_price: Decimal
    quantity: int
    stock: Optional[Decimal] = None

    @property
    def total_price(self) -> Decimal:
        return self.unit_price * self.quantity

    def as_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "name": self.name,
            "sku": self.sku,
            "unit_price": self.unit_price,
            "quantity": self.quantity,
            "total_price": self.total_price,
            "stock": self.stock,
        }


class ActiveOrder:
    def __init__(self) -> None:
        self.lines: List[OrderLine] = []

    def find_line(self, product_id: str) -> Optional[OrderLine]:
        for line in self.lines:
            if line.product_id == product_id:
                return line
        return None

    def add_product(self, product: CatalogProduct, quantity: int = 1) -> OrderLine:
        if quantity < 1:
            raise ValueError("quantity must be positive")
        existing = self.find_line(str(product.id))
        if existing is not None:
            existing.quantity += quantity
            return existing
        line = OrderLine(
            product_id=str(product.id),
            name=product.name,
            sku=product.sku,
            unit_price=product.selling_price,
            quantity=quantity,
            stock=product.stock,
        )
        self.lines.append(line)
        return line

    def remove_line(self, index: int) -> OrderLine:
        if index < 0 or index >= len(self.lines):
            raise IndexError("order line out of range")
        return self.lines.pop(index)

    def clear(self) -> None:
        self.lines = []

    @property
    def total(self) -> Decimal:
        return sum((line.total_price for line in self.lines), Decimal("0"))

    def as_dict(self) -> dict:
        return {"lines": [line.as_dict() for line in self.lines], "total": self.total}
