import unittest

from coursenav.results import SearchFilter
from coursenav.tokens import (
    ActionToken,
    ActionTokenCodec,
    TokenDecodeError,
    TokenError,
    TokenTooLongError,
    Verb,
    decode_token,
    encode_token,
)


class TestActionTokenCodec(unittest.TestCase):
    def setUp(self):
        self.codec = ActionTokenCodec(max_bytes=64)

    def test_level_tokens_roundtrip(self):
        token = self.codec.encode(Verb.COURSE, ("cs101",))
        self.assertEqual(token, "course:cs101")
        self.assertEqual(self.codec.decode(token), ActionToken(Verb.COURSE, ("cs101",), None))

        token = self.codec.encode(Verb.YEAR, (3,))
        self.assertEqual(self.codec.decode(token).args, (3,))

    def test_tail_with_delimiter_roundtrips(self):
        token = self.codec.encode(Verb.SEARCH_PAGE, (2, SearchFilter.CHAPTERS), "C++: basics")
        decoded = self.codec.decode(token)
        self.assertEqual(decoded.verb, Verb.SEARCH_PAGE)
        self.assertEqual(decoded.args, (2, "chapters"))
        self.assertEqual(decoded.tail, "C++: basics")

    def test_non_ascii_tail_roundtrips(self):
        token = self.codec.encode(Verb.SEARCH_FILTER, (SearchFilter.ALL,), "Géométrie")
        self.assertEqual(self.codec.decode(token).tail, "Géométrie")

    def test_chapters_are_addressed_by_document_id(self):
        token = self.codec.encode(Verb.SEARCH_CHAPTER, ("64f1a2b3c4d5e6f7a8b9c0d1",))
        self.assertEqual(token, "search_chapter:64f1a2b3c4d5e6f7a8b9c0d1")
        self.assertEqual(self.codec.decode(token), ActionToken(Verb.SEARCH_CHAPTER, ("64f1a2b3c4d5e6f7a8b9c0d1",), None))
        self.assertEqual(self.codec.decode("chapter:cs101-ch1").args, ("cs101-ch1",))
        with self.assertRaises(TokenError):
            self.codec.encode(Verb.CHAPTER, tail="Chapter 1")

    def test_library_tokens_roundtrip(self):
        self.assertEqual(self.codec.decode("fav_add:cs101-ch1"), ActionToken(Verb.FAVORITE_ADD, ("cs101-ch1",), None))
        self.assertEqual(self.codec.decode("fav_page:3").args, (3,))
        self.assertEqual(self.codec.decode("hist_page:0").args, (0,))
        for token in ("hist_clear", "all_units", "help"):
            with self.subTest(token=token):
                self.assertEqual(self.codec.encode(self.codec.decode(token).verb), token)

    def test_unescaped_delimiter_in_tail_is_rejoined(self):
        decoded = self.codec.decode("search_filter:all:a:b:c")
        self.assertEqual(decoded.tail, "a:b:c")

    def test_decoded_filter_equals_enum_value(self):
        decoded = self.codec.decode(self.codec.encode(Verb.SEARCH_FILTER, (SearchFilter.RESOURCES,), "exam"))
        self.assertEqual(SearchFilter(decoded.args[0]), SearchFilter.RESOURCES)

    def test_oversized_token_is_rejected_not_truncated(self):
        with self.assertRaises(TokenTooLongError) as ctx:
            self.codec.encode(Verb.SEARCH_FILTER, (SearchFilter.ALL,), "x" * 80)
        self.assertEqual(ctx.exception.limit, 64)
        self.assertGreater(ctx.exception.size, 64)
        self.assertFalse(self.codec.fits(Verb.DOCUMENT, ("d" * 70,)))
        self.assertTrue(self.codec.fits(Verb.SEARCH_FILTER, (SearchFilter.ALL,), "x" * 10))

    def test_byte_limit_counts_utf8_bytes(self):
        small = ActionTokenCodec(max_bytes=30)
        # "search_filter:all:" is 18 bytes; each "é" percent-encodes to 6 bytes.
        self.assertTrue(small.fits(Verb.SEARCH_FILTER, (SearchFilter.ALL,), "éé"))
        self.assertFalse(small.fits(Verb.SEARCH_FILTER, (SearchFilter.ALL,), "ééé"))

    def test_malformed_tokens_raise_decode_error(self):
        bad_tokens = (
            "", "teleport:1", "course", "course:a:b", "year:abc", "year:-1",
            "search_page:1:everything:kw", "search_filter:all:%FF", "chapter:a:b", "fav_page:x",
        )
        for bad in bad_tokens:
            with self.subTest(token=bad):
                with self.assertRaises(TokenDecodeError):
                    self.codec.decode(bad)

    def test_encode_argument_errors(self):
        with self.assertRaises(TokenError):
            self.codec.encode(Verb.COURSE, ())
        with self.assertRaises(TokenError):
            self.codec.encode(Verb.COURSE, ("a:b",))
        with self.assertRaises(TokenError):
            self.codec.encode(Verb.CHAPTER)
        with self.assertRaises(TokenError):
            self.codec.encode(Verb.FAVORITES_PAGE, (-1,))
        with self.assertRaises(TokenError):
            self.codec.encode(Verb.BROWSE, tail="x")
        with self.assertRaises(TokenError):
            self.codec.encode(Verb.SEARCH_FILTER, ("everything",), "kw")
        with self.assertRaises(TokenError):
            self.codec.encode("teleport")

    def test_module_helpers_use_default_codec(self):
        token = encode_token(Verb.START_OVER)
        self.assertEqual(token, "start_over")
        self.assertEqual(decode_token(token).verb, Verb.START_OVER)


if __name__ == "__main__":
    unittest.main()
