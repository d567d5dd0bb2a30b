import itertools
import unittest

from domain.errors import GenerationExhausted, InvalidFormat
from domain.link_codes import (
    LINK_CODE_ALPHABET,
    LINK_CODE_LENGTH,
    LINK_CODE_PATTERN,
    fallback_link_code,
    generate_link_code,
    normalize_link_code,
)


class LinkCodeGeneratorTests(unittest.TestCase):
    def test_alphabet_has_32_unambiguous_symbols(self):
        self.assertEqual(len(LINK_CODE_ALPHABET), 32)
        self.assertEqual(len(set(LINK_CODE_ALPHABET)), 32)
        for ambiguous in "0O1I":
            self.assertNotIn(ambiguous, LINK_CODE_ALPHABET)

    def test_generated_code_uses_alphabet(self):
        code = generate_link_code(lambda _: False)
        self.assertEqual(len(code), LINK_CODE_LENGTH)
        self.assertTrue(all(c in LINK_CODE_ALPHABET for c in code))

    def test_retries_on_collision(self):
        taken = {"AAAAAAAA", "BBBBBBBB"}
        symbols = itertools.chain("A" * 8, "B" * 8, itertools.repeat("C"))
        code = generate_link_code(lambda c: c in taken, choice=lambda _: next(symbols))
        self.assertEqual(code, "CCCCCCCC")

    def test_falls_back_to_time_derived_code_after_max_attempts(self):
        seen = []

        def exists(candidate):
            seen.append(candidate)
            return candidate == "AAAAAAAA"

        code = generate_link_code(exists, max_attempts=3, choice=lambda _: "A")
        self.assertEqual(len(seen), 4)
        self.assertNotEqual(code, "AAAAAAAA")
        self.assertRegex(code, LINK_CODE_PATTERN)

    def test_exhausted_when_fallback_also_collides(self):
        with self.assertRaises(GenerationExhausted):
            generate_link_code(lambda _: True, max_attempts=2)

    def test_fallback_code_is_fixed_length(self):
        self.assertRegex(fallback_link_code(now=0), LINK_CODE_PATTERN)
        self.assertRegex(fallback_link_code(), LINK_CODE_PATTERN)


class NormalizeLinkCodeTests(unittest.TestCase):
    def test_trims_and_upper_cases(self):
        self.assertEqual(normalize_link_code("  k7m2x9lp \n"), "K7M2X9LP")

    def test_rejects_wrong_length(self):
        with self.assertRaises(InvalidFormat):
            normalize_link_code("short")
        with self.assertRaises(InvalidFormat):
            normalize_link_code("K7M2X9LPQ")

    def test_rejects_non_alphanumeric(self):
        with self.assertRaises(InvalidFormat):
            normalize_link_code("K7M2-9LP")

    def test_rejects_non_string(self):
        with self.assertRaises(InvalidFormat):
            normalize_link_code(None)


if __name__ == "__main__":
    unittest.main()
