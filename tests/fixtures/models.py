"""
Result types mapped from the seeded test tables.

The classes mirror the rows returned by the test database's tables and
stored procedures. They are plain classes and dataclasses with defaults so
rows can be mapped onto them by reflection.
"""
import datetime
import enum
import uuid
from dataclasses import dataclass
from decimal import Decimal

import pytest


class OrderStatus(enum.Enum):
    PENDING = 'Pending'
    PROCESSING = 'Processing'
    SHIPPED = 'Shipped'
    DELIVERED = 'Delivered'
    CANCELLED = 'Cancelled'


class Priority(enum.IntEnum):
    LOW = 1
    NORMAL = 2
    HIGH = 3


@dataclass
class UserDto:
    UserId: int = 0
    Username: str = ''
    Email: str = ''
    FirstName: str = ''
    LastName: str = ''
    CreatedDate: datetime.datetime | None = None
    IsActive: bool = False


@dataclass
class ProductDto:
    ProductId: int = 0
    ProductName: str = ''
    CategoryId: int = 0
    Price: Decimal = Decimal(0)
    StockQty: int = 0
    CreatedDate: datetime.datetime | None = None
    IsActive: bool = False
    CategoryName: str = ''
    Description: str | None = None


@dataclass
class OrderDto:
    OrderId: int = 0
    UserId: int = 0
    OrderDate: datetime.datetime | None = None
    TotalAmount: Decimal = Decimal(0)
    Status: OrderStatus = OrderStatus.PENDING
    Username: str = ''
    FirstName: str = ''
    LastName: str = ''


class Account:
    """Plain class with a computed read-only property and a validated setter."""

    id: int = 0
    token: uuid.UUID | None = None
    priority: Priority = Priority.NORMAL

    def __init__(self):
        self._display_name = ''

    @property
    def display_name(self) -> str:
        return self._display_name

    @display_name.setter
    def display_name(self, value: str) -> None:
        self._display_name = value.strip()

    @property
    def label(self) -> str:
        return f'{self.id}:{self._display_name}'


class Point:
    """Requires constructor arguments, so it cannot be mapped by reflection."""

    x: int
    y: int

    def __init__(self, x, y):
        self.x = x
        self.y = y


@pytest.fixture
def seeded_usernames():
    return ['asmith', 'bwilliams', 'jdoe']
