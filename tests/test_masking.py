"""Tests for binding masking."""

import pytest

from querydoctor.masking import MASKED, BindingMasker, find_placeholder_offsets


@pytest.fixture
def masker():
    return BindingMasker.with_defaults()


class TestPlaceholderOffsets:
    """Placeholder discovery outside string literals."""

    def test_finds_placeholders_in_order(self):
        sql = "select * from t where a = ? and b = ?"
        assert find_placeholder_offsets(sql) == [26, 36]

    def test_ignores_question_marks_in_strings(self):
        sql = "select * from t where note = 'why?' and id = ?"
        offsets = find_placeholder_offsets(sql)
        assert len(offsets) == 1
        assert sql[offsets[0]] == "?"
        assert offsets[0] == len(sql) - 1

    def test_escaped_quote_does_not_end_string(self):
        sql = r"select * from t where note = 'it\'s?' and id = ?"
        assert len(find_placeholder_offsets(sql)) == 1


class TestColumnMasking:
    """Bindings compared against sensitive columns are masked."""

    def test_equality(self, masker):
        result = masker.mask(
            "select * from users where email = ? and password = ?",
            ["someone", "hunter2"],
        )
        assert result == ["someone", MASKED]

    def test_qualified_and_quoted_column(self, masker):
        result = masker.mask("select * from users u where u.`token` = ?", ["abc"])
        assert result == [MASKED]

    def test_in_list(self, masker):
        result = masker.mask(
            "select * from sessions where user_id = ? and token in (?, ?)",
            [7, "t1", "t2"],
        )
        assert result == [7, MASKED, MASKED]

    def test_between(self, masker):
        result = masker.mask(
            "select * from people where ssn between ? and ? and age > ?",
            ["000", "999", 30],
        )
        assert result == [MASKED, MASKED, 30]

    def test_case_insensitive_column(self, masker):
        assert masker.mask("SELECT * FROM users WHERE PASSWORD = ?", ["x"]) == [MASKED]

    def test_non_sensitive_columns_untouched(self, masker):
        result = masker.mask("select * from users where id = ? and name = ?", [1, "Ann"])
        assert result == [1, "Ann"]


class TestValueMasking:
    """String values that look like PII are masked regardless of column."""

    def test_email_value(self, masker):
        result = masker.mask("insert into users (name, contact) values (?, ?)", ["Ann", "ann@example.com"])
        assert result == ["Ann", MASKED]

    def test_phone_value(self, masker):
        assert masker.mask("select * from t where x = ?", ["+14155550123"]) == [MASKED]

    def test_ssn_value(self, masker):
        assert masker.mask("select * from t where x = ?", ["123-45-6789"]) == [MASKED]

    def test_numbers_are_not_pattern_checked(self, masker):
        assert masker.mask("select * from t where x = ?", [14155550123]) == [14155550123]


class TestMaskerContract:
    """Shape guarantees."""

    def test_input_not_modified(self, masker):
        bindings = ["hunter2"]
        masker.mask("select * from users where password = ?", bindings)
        assert bindings == ["hunter2"]

    def test_same_length(self, masker):
        result = masker.mask("select * from t where password = ?", ["a", "b", "c"])
        assert len(result) == 3

    def test_empty_bindings(self, masker):
        assert masker.mask("select * from users where password = ?", []) == []

    def test_default_masker_is_inactive(self):
        masker = BindingMasker()
        assert not masker.is_active
        assert masker.mask("select * from users where password = ?", ["x"]) == ["x"]

    def test_custom_columns(self):
        masker = BindingMasker(columns=["IBAN"])
        assert masker.mask("select * from accounts where iban = ?", ["DE89"]) == [MASKED]

    @pytest.mark.parametrize("sql", ["", "???", "password = ", "' unterminated ?"])
    def test_never_raises(self, masker, sql):
        masker.mask(sql, ["a", "b"])
