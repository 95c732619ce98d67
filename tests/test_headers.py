import unittest

from services.headers import Field, normalize_header, normalize_headers, resolve_columns


class TestNormalizeHeader(unittest.TestCase):

    def test_known_labels(self):
        self.assertEqual(
            normalize_headers(["Part Key", "TP-URL", "DC-URL", "Title", "Active",
                               "Last Updated", "Server Down", "Image URL"]),
            ["part_key", "tp_url", "dc_url", "title", "active",
             "last_updated", "server_down", "image_url"],
        )

    def test_trailing_punctuation_collapses(self):
        for raw, want in [
            ("Server Down", "server_down"),
            ("Server Down?", "server_down"),
            ("server down:", "server_down"),
            ("SERVER DOWN (count)", "server_down_count_"),
            ("TP URL", "tp_url"),
            ("TP-URL:", "tp_url"),
            ("DC URL.", "dc_url"),
            ("dc-url ", "dc_url"),
            ("Image URL?", "image_url"),
            ("image  url", "image_url"),
        ]:
            with self.subTest(raw=raw):
                self.assertEqual(normalize_header(raw), want)

    def test_runs_of_punctuation_become_one_underscore(self):
        self.assertEqual(normalize_header("Last -- Down   Vote"), "last_down_vote")

    def test_unknown_header_passes_through(self):
        self.assertEqual(normalize_header("Player Count!"), "player_count_")
        self.assertEqual(normalize_header(""), "")
        self.assertEqual(normalize_header(None), "")

    def test_non_string_header(self):
        self.assertEqual(normalize_header(2024), "2024")

    def test_order_and_length_preserved(self):
        raw = ["Title", "zzz", "Part Key"]
        self.assertEqual(normalize_headers(raw), ["title", "zzz", "part_key"])


class TestResolveColumns(unittest.TestCase):

    def test_first_column_wins(self):
        cols = resolve_columns(["title", "part_key", "notes", "part_key"])
        self.assertEqual(cols[Field.PART_KEY], 1)
        self.assertEqual(cols[Field.TITLE], 0)
        self.assertNotIn(Field.SERVER_DOWN, cols)
        self.assertEqual(len(cols), 2)
