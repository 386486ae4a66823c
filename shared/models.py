"""
ORM records backing the SQL order store. Both the API and the processor map
these tables; only the API creates them.
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from shared.database import Base
from shared.orders import Order, OrderLine, OrderMetadata, OrderStatus


class OrderRecord(Base):
    __tablename__ = "orders"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    customer_id: Mapped[str] = mapped_column(String(200), nullable=False)
    customer_email: Mapped[str] = mapped_column(String(200), nullable=False)
    status: Mapped[OrderStatus] = mapped_column(
        SAEnum(OrderStatus, name="orderstatus"), default=OrderStatus.PENDING, nullable=False
    )
    total_amount: Mapped[Decimal] = mapped_column(Numeric, nullable=False)
    payment_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    user_agent: Mapped[str] = mapped_column(Text, nullable=False, default="unknown")
    source_ip: Mapped[str] = mapped_column(String(64), nullable=False, default="unknown")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    items: Mapped[list["OrderItemRecord"]] = relationship(
        "OrderItemRecord",
        back_populates="order",
        order_by="OrderItemRecord.position",
        cascade="all, delete-orphan",
    )

    @classmethod
    def from_domain(cls, order: Order) -> "OrderRecord":
        return cls(
            id=order.order_id,
            customer_id=order.customer_id,
            customer_email=order.customer_email,
            status=order.status,
            total_amount=order.total_amount,
            payment_id=order.payment_id,
            failure_reason=order.failure_reason,
            user_agent=order.metadata.user_agent,
            source_ip=order.metadata.source_ip,
            created_at=order.created_at,
            updated_at=order.updated_at,
            items=[
                OrderItemRecord(
                    position=position,
                    product_id=line.product_id,
                    quantity=line.quantity,
                    unit_price=line.unit_price,
                )
                for position, line in enumerate(order.items)
            ],
        )

    def to_domain(self) -> Order:
        return Order(
            order_id=self.id,
            customer_id=self.customer_id,
            customer_email=self.customer_email,
            items=[
                OrderLine(
                    product_id=item.product_id,
                    quantity=item.quantity,
                    unit_price=item.unit_price,
                )
                for item in self.items
            ],
            total_amount=self.total_amount,
            status=self.status,
            payment_id=self.payment_id,
            failure_reason=self.failure_reason,
            created_at=self.created_at,
            updated_at=self.updated_at,
            metadata=OrderMetadata(user_agent=self.user_agent, source_ip=self.source_ip),
        )


class OrderItemRecord(Base):
    __tablename__ = "order_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_id: Mapped[str] = mapped_column(ForeignKey("orders.id"), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    product_id: Mapped[str] = mapped_column(String(100), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric, nullable=False)

    order: Mapped["OrderRecord"] = relationship("OrderRecord", back_populates="items")
