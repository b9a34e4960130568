import pytest

from exam.callbacks import (
    ExamCallback,
    format_exam_callback,
    index_to_letter,
    is_exam_callback,
    letter_to_index,
    parse_exam_callback,
)


def test_parse_valid_token():
    assert parse_exam_callback("exam:42:1:3") == ExamCallback(42, 1, 3)


def test_format_matches_parse():
    token = format_exam_callback(7, 0, 2)
    assert token == "exam:7:0:2"
    assert parse_exam_callback(token) == ExamCallback(7, 0, 2)


def test_negative_numbers_parse():
    assert parse_exam_callback("exam:-5:0:1") == ExamCallback(-5, 0, 1)


@pytest.mark.parametrize(
    "data",
    [
        "",
        "exam:",
        "exam:1:2",
        "exam:1:2:3:4",
        "exam:a:b:c",
        "exam:1:2:",
        "exam:1: 2:3",
        "exam:--1:0:0",
        "exam:1:2:٣",
        "welcome:1:2:3",
        "EXAM:1:2:3",
    ],
)
def test_malformed_tokens_are_rejected(data):
    assert parse_exam_callback(data) is None


def test_prefix_check():
    assert is_exam_callback("exam:anything")
    assert not is_exam_callback("report:1")


def test_letters():
    assert [index_to_letter(i) for i in range(4)] == ["A", "B", "C", "D"]
    assert letter_to_index("C") == 2
    assert letter_to_index("b") == 1
