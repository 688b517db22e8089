"""Merchant product catalog backed by the ``products`` table."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional

from sqlalchemy import select

from acp_checkout.database import Database, ProductRow


@dataclass(frozen=True)
class Product:
    id: str
    title: str
    unit_amount: int
    unit_discount: int = 0
    currency: str = "usd"
    in_stock: bool = True


def _product_from_row(row: ProductRow) -> Product:
    return Product(
        id=row.id,
        title=row.title,
        unit_amount=row.unit_amount,
        unit_discount=row.unit_discount or 0,
        currency=row.currency or "usd",
        in_stock=row.in_stock if row.in_stock is not None else True,
    )


class Catalog:
    def __init__(self, database: Database) -> None:
        self.database = database

    async def get(self, product_id: str) -> Optional[Product]:
        async with self.database.session() as db:
            row = await db.get(ProductRow, product_id)
            return _product_from_row(row) if row else None

    async def get_many(self, product_ids: Iterable[str]) -> dict[str, Product]:
        ids = list(dict.fromkeys(product_ids))
        if not ids:
            return {}
        async with self.database.session() as db:
            rows = (await db.execute(select(ProductRow).where(ProductRow.id.in_(ids)))).scalars()
            return {row.id: _product_from_row(row) for row in rows}

    async def upsert(self, products: Iterable[Product]) -> int:
        count = 0
        async with self.database.session() as db:
            for product in products:
                await db.merge(
                    ProductRow(
                        id=product.id,
                        title=product.title,
                        unit_amount=product.unit_amount,
                        unit_discount=product.unit_discount,
                        currency=product.currency.lower(),
                        in_stock=product.in_stock,
                    )
                )
                count += 1
            await db.commit()
        return count
