"""
Property path resolution tests
"""

from datetime import date

import pytest

from dynarepo import (
    FilterBuildError, FilterSpec, ProjectionSpec, ResolutionError, SchemaRegistry, SortSpec, resolve
)
from dynarepo.config import PathConfig

from .entities import Address, Company, Employee, Person


class TestResolution:
    """Resolving paths against mapped and annotated types"""

    def test_scalar_path(self):
        path = resolve(Employee, "name")
        assert path.canonical == "name"
        assert path.leaf.python_type is str
        assert path.is_scalar
        assert not path.crosses_collection

    def test_nested_path_through_relationship(self):
        path = resolve(Employee, "company.name")
        assert path.names == ("company", "name")
        assert path.segments[0].related is Company
        assert not path.segments[0].is_collection
        assert path.leaf.is_text

    def test_collection_relationship(self):
        path = resolve(Company, "employees.salary")
        assert path.segments[0].is_collection
        assert path.segments[0].related is Employee
        assert path.crosses_collection

    def test_resolution_is_deterministic(self):
        registry = SchemaRegistry()
        first = registry.resolve(Employee, "company.country")
        second = registry.resolve(Employee, "company.country")
        assert first is second
        assert first.segments == second.segments

    def test_orm_attribute_is_accepted(self):
        assert resolve(Company, Company.name).canonical == "name"

    def test_optional_types_are_unwrapped(self):
        leaf = resolve(Employee, "hired_on").leaf
        assert leaf.python_type is date
        assert leaf.nullable

    def test_dataclass_types(self):
        assert resolve(Person, "address.city").segments[0].related is Address
        friends = resolve(Person, "friends.name").segments[0]
        assert friends.is_collection and friends.related is Person
        nicknames = resolve(Person, "nicknames").leaf
        assert not nicknames.is_relationship


class TestResolutionErrors:
    """Unresolvable paths identify the first failing segment"""

    def test_unknown_field(self):
        with pytest.raises(ResolutionError) as exc_info:
            resolve(Employee, "nickname")
        assert exc_info.value.segment == "nickname"
        assert exc_info.value.type is Employee
        assert exc_info.value.path == "nickname"

    def test_unknown_nested_field(self):
        with pytest.raises(ResolutionError) as exc_info:
            resolve(Employee, "company.ceo.name")
        assert exc_info.value.segment == "ceo"
        assert exc_info.value.type is Company

    def test_traversal_into_scalar(self):
        with pytest.raises(ResolutionError) as exc_info:
            resolve(Employee, "name.length")
        assert exc_info.value.segment == "length"

    @pytest.mark.parametrize("path", ["", "   ", "company..name", "name."])
    def test_malformed_paths(self, path):
        with pytest.raises(ResolutionError):
            resolve(Employee, path)

    def test_non_string_path(self):
        with pytest.raises(ResolutionError):
            resolve(Employee, 42)

    def test_case_sensitive_by_default(self):
        with pytest.raises(ResolutionError):
            resolve(Employee, "Company.Name")

    def test_attribute_of_another_type(self):
        with pytest.raises(ResolutionError) as exc_info:
            resolve(Employee, Company.name)
        assert exc_info.value.segment == "name"
        assert exc_info.value.type is Employee
        assert exc_info.value.path == "Company.name"

    def test_attribute_of_another_type_in_specs(self):
        with pytest.raises(ResolutionError):
            FilterSpec(Employee).equal(Company.name, "Acme")
        with pytest.raises(ResolutionError):
            SortSpec(Employee).ascending(Company.founded)
        with pytest.raises(ResolutionError):
            ProjectionSpec(Employee).include(Company.name)


class TestCaseInsensitiveRegistry:

    def test_case_folding(self):
        registry = SchemaRegistry.from_config(PathConfig(case_sensitive=False))
        path = registry.resolve(Employee, "Company.NAME")
        assert path.canonical == "company.name"
        assert path.raw == "Company.NAME"


class TestAccessors:
    """Reading values through resolved paths"""

    def test_read_is_null_safe(self):
        person = Person(name="Ada")
        assert resolve(Person, "address.city").read(person) is None

        person.address = Address(city="London")
        assert resolve(Person, "address.city").read(person) == "London"

    def test_iter_values_fans_out_over_collections(self):
        bob = Person(name="Bob")
        eve = Person(name="Eve", address=Address(city="Paris"))
        ada = Person(name="Ada", friends=[bob, eve])

        assert list(resolve(Person, "friends.name").iter_values(ada)) == ["Bob", "Eve"]
        # A missing intermediate yields nothing; a missing leaf yields None
        assert list(resolve(Person, "friends.address.city").iter_values(ada)) == ["Paris"]
        assert list(resolve(Person, "address").iter_values(ada)) == [None]


class TestCoercion:
    """Field descriptors convert operands to the field type"""

    def test_lax_conversion(self):
        leaf = resolve(Employee, "salary").leaf
        assert leaf.coerce("5000", "salary") == 5000
        assert resolve(Employee, "hired_on").leaf.coerce("2024-02-01", "hired_on") == date(2024, 2, 1)

    def test_conversion_failure(self):
        leaf = resolve(Employee, "salary").leaf
        with pytest.raises(FilterBuildError) as exc_info:
            leaf.coerce("lots", "salary")
        assert exc_info.value.path == "salary"
        assert exc_info.value.value == "lots"
        assert exc_info.value.target_type is int
