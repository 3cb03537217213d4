"""
Tests for record types, filters and collection descriptors.
"""

import pytest

from paydesk.exceptions import InvalidDocument, UnknownCollection
from paydesk.models import (
    CHECKS,
    EMPLOYEES,
    Check,
    CheckFilter,
    ClientFilter,
    Bank,
    Employee,
    User,
    get_collection,
    store_field,
)
from paydesk.storage import Document


def test_store_field_names():
    assert store_field("pay_rate") == "payRate"
    assert store_field("made_by_name") == "madeByName"
    assert store_field("name") == "name"


class TestRecords:
    def test_from_document_applies_defaults_and_ignores_unknown(self):
        emp = Employee.from_document(
            Document("e1", {"name": "Al", "payRate": 20.5, "legacyField": "x"})
        )
        assert emp == Employee(id="e1", name="Al", pay_rate=20.5)
        assert emp.active is True
        assert emp.pay_type == "hourly"

    def test_to_document_uses_store_names(self):
        doc = Check(id="k1", employee_id="e1", company_id="A", amount=10.0).to_document()
        assert doc["employeeId"] == "e1"
        assert doc["checkNumber"] is None
        assert "id" not in doc

    def test_encode_fields(self):
        assert Employee.encode_fields({"pay_rate": 22.0, "active": False}) == {
            "payRate": 22.0,
            "active": False,
        }

    def test_encode_fields_rejects_unknown(self):
        with pytest.raises(ValueError, match="no field"):
            Employee.encode_fields({"salary": 1})

    def test_encode_fields_rejects_id(self):
        with pytest.raises(ValueError):
            Employee.encode_fields({"id": "other"})

    def test_merged_is_a_copy(self):
        emp = Employee(id="e1", name="Al")
        changed = emp.merged({"name": "Alan"})
        assert changed.name == "Alan"
        assert emp.name == "Al"

    def test_user_role(self):
        assert User(id="u1", role="admin").is_admin
        assert not User(id="u2").is_admin


class TestValidation:
    def test_wrongly_typed_document_is_rejected(self):
        with pytest.raises(ValueError):
            Employee.from_document(Document("e1", {"payRate": "abc", "active": "nope"}))

    def test_decode_names_the_document(self):
        with pytest.raises(InvalidDocument, match="employees/e1"):
            EMPLOYEES.decode(Document("e1", {"payRate": "abc"}))

    def test_numeric_strings_are_coerced(self):
        emp = Employee.from_document(Document("e1", {"payRate": "21.5"}))
        assert emp.pay_rate == 21.5

    def test_unknown_pay_type_rejected(self):
        with pytest.raises(ValueError):
            Employee.from_document(Document("e1", {"payType": "salaried"}))

    def test_numeric_bank_fields_become_text(self):
        bank = Bank.from_document(Document("b1", {"startingCheckNumber": 1001}))
        assert bank.starting_check_number == "1001"

    def test_encode_fields_validates_values(self):
        with pytest.raises(ValueError):
            Employee.encode_fields({"pay_rate": "x"})
        assert Employee.encode_fields({"pay_rate": 22}) == {"payRate": 22.0}

    def test_merged_validates(self):
        with pytest.raises(ValueError):
            Employee(id="e1").merged({"active": "sometimes"})

    def test_records_are_frozen(self):
        emp = Employee(id="e1", name="Al")
        with pytest.raises(ValueError):
            emp.name = "Alan"


class TestFilters:
    def test_none_fields_are_dropped(self):
        assert CheckFilter(company_id="A").predicates() == {"companyId": "A"}
        assert CheckFilter().predicates() == {}

    def test_false_is_kept(self):
        assert CheckFilter(reviewed=False).predicates() == {"reviewed": False}

    def test_wrong_collection_filter(self):
        with pytest.raises(TypeError):
            EMPLOYEES.predicates(ClientFilter(company_id="A"))

    def test_mapping_passthrough(self):
        assert CHECKS.predicates({"companyId": "A", "createdBy": None}) == {"companyId": "A"}


def test_get_collection():
    assert get_collection("employees") is EMPLOYEES
    assert get_collection(EMPLOYEES) is EMPLOYEES
    with pytest.raises(UnknownCollection):
        get_collection("payslips")
