import math

from zift.entropy import shannon_entropy


def test_empty_string_has_zero_entropy():
    assert shannon_entropy("") == 0.0


def test_repeated_character_has_zero_entropy():
    assert shannon_entropy("a" * 25) == 0.0


def test_two_symbols_one_bit():
    assert shannon_entropy("abab") == 1.0


def test_all_distinct_is_log2_of_length():
    text = "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"
    assert math.isclose(shannon_entropy(text), math.log2(len(text)))
