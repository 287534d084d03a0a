"""
Tests for row-to-object mapping and mapper resolution.
"""
import datetime
import uuid
from dataclasses import dataclass
from decimal import Decimal

import pytest
from dbtoolkit.exceptions import MappingError, TypeConversionError
from dbtoolkit.mapper import DataMapper, ReflectionDataMapper, RowMethodMapper
from dbtoolkit.mapper import register_mapper, writable_properties
from dbtoolkit.row import Column, Row
from tests.fixtures.models import Account, OrderDto, OrderStatus, Point
from tests.fixtures.models import Priority, ProductDto, UserDto


def make_row(**values):
    return Row([Column(name) for name in values], list(values.values()))


class TestWritableProperties:
    """Test discovery of assignable attributes."""

    def test_dataclass_fields(self):
        names = [name for name, _ in writable_properties(UserDto)]
        assert names == ['UserId', 'Username', 'Email', 'FirstName', 'LastName',
                         'CreatedDate', 'IsActive']

    def test_read_only_property_excluded(self):
        props = dict(writable_properties(Account))
        assert 'display_name' in props
        assert props['display_name'] is str
        assert 'label' not in props
        assert '_display_name' not in props

    def test_result_is_cached(self):
        assert writable_properties(Account) is writable_properties(Account)


class TestReflectionDataMapper:
    """Test reflective mapping of rows onto result types."""

    def test_maps_columns_case_insensitively(self):
        row = make_row(userid=1, USERNAME='jdoe', Email='john.doe@example.com',
                       FirstName='John', LastName='Doe', IsActive=1,
                       CreatedDate=datetime.datetime(2024, 1, 2))
        user = ReflectionDataMapper(UserDto).map(row)
        assert user == UserDto(1, 'jdoe', 'john.doe@example.com', 'John', 'Doe',
                               datetime.datetime(2024, 1, 2), True)

    def test_unmatched_columns_ignored(self):
        row = make_row(UserId=1, Extra='ignored')
        user = ReflectionDataMapper(UserDto).map(row)
        assert user.UserId == 1
        assert not hasattr(user, 'Extra')

    def test_null_keeps_constructor_default(self):
        row = make_row(UserId=None, Username=None)
        user = ReflectionDataMapper(UserDto).map(row)
        assert user.UserId == 0
        assert user.Username == ''

    def test_numeric_and_optional_conversions(self):
        row = make_row(ProductId=Decimal('2'), Price=29.99, StockQty='200',
                       Description='Mouse')
        product = ReflectionDataMapper(ProductDto).map(row)
        assert product.ProductId == 2
        assert product.Price == Decimal('29.99')
        assert product.StockQty == 200
        assert product.Description == 'Mouse'

    def test_enum_by_name_or_value(self):
        mapper = ReflectionDataMapper(OrderDto)
        assert mapper.map(make_row(Status='Shipped')).Status is OrderStatus.SHIPPED
        assert mapper.map(make_row(Status='CANCELLED')).Status is OrderStatus.CANCELLED

    def test_int_enum_from_number(self):
        account = ReflectionDataMapper(Account).map(make_row(priority=3))
        assert account.priority is Priority.HIGH

    @pytest.mark.parametrize('text', ['1', ' 1 ', 'LOW'])
    def test_int_enum_from_text(self, text):
        account = ReflectionDataMapper(Account).map(make_row(priority=text))
        assert account.priority is Priority.LOW

    def test_numeric_text_outside_int_enum(self):
        with pytest.raises(TypeConversionError, match="'priority'"):
            ReflectionDataMapper(Account).map(make_row(priority='7'))

    def test_uuid_and_property_setter(self):
        token = uuid.uuid4()
        row = make_row(id=5, token=str(token), display_name='  Alice  ', label='skipped')
        account = ReflectionDataMapper(Account).map(row)
        assert account.id == 5
        assert account.token == token
        assert account.display_name == 'Alice'
        assert account.label == '5:Alice'

    def test_conversion_failure_names_column_and_type(self):
        row = make_row(UserId='not a number')
        with pytest.raises(TypeConversionError, match="'UserId'.*int.*UserDto.UserId"):
            ReflectionDataMapper(UserDto).map(row)

    def test_invalid_enum_value(self):
        with pytest.raises(TypeConversionError):
            ReflectionDataMapper(OrderDto).map(make_row(Status='Lost'))

    def test_requires_no_argument_constructor(self):
        with pytest.raises(MappingError, match='constructible without arguments'):
            ReflectionDataMapper(Point).map(make_row(x=1, y=2))

    def test_each_row_gets_new_instance(self):
        mapper = ReflectionDataMapper(UserDto)
        first = mapper.map(make_row(UserId=1))
        second = mapper.map(make_row(UserId=2))
        assert first is not second
        assert (first.UserId, second.UserId) == (1, 2)


@dataclass
class Total:
    amount: Decimal = Decimal(0)

    @classmethod
    def from_row(cls, row):
        return cls(Decimal(str(row[0])) * 2)


class TotalMapper(DataMapper[Total]):
    def map(self, row):
        return Total(Decimal(-1))


class TestMapperRegistry:
    """Test resolution order of mappers for a result type."""

    def test_registered_mapper_first(self, mapper_registry):
        mapper = TotalMapper()
        mapper_registry.register(Total, mapper)
        assert Total in mapper_registry
        assert mapper_registry.resolve(Total) is mapper

    def test_from_row_before_reflection(self, mapper_registry):
        mapper = mapper_registry.resolve(Total)
        assert isinstance(mapper, RowMethodMapper)
        assert mapper.map(make_row(amount=2)).amount == Decimal(4)

    def test_reflection_fallback(self, mapper_registry):
        assert isinstance(mapper_registry.resolve(UserDto), ReflectionDataMapper)

    def test_reflection_disabled(self, mapper_registry):
        with pytest.raises(MappingError, match='No mapper registered for UserDto'):
            mapper_registry.resolve(UserDto, reflection=False)

    def test_unregister(self, mapper_registry):
        mapper_registry.register(UserDto, TotalMapper())
        mapper_registry.unregister(UserDto)
        assert UserDto not in mapper_registry
        assert mapper_registry.get(UserDto) is None

    def test_register_mapper_decorator(self, mapper_registry):
        @register_mapper(UserDto, registry=mapper_registry)
        class UserMapper(DataMapper[UserDto]):
            def map(self, row):
                return UserDto(UserId=row['id'])

        mapper = mapper_registry.resolve(UserDto, reflection=False)
        assert isinstance(mapper, UserMapper)
        assert mapper.map(make_row(id=9)).UserId == 9
