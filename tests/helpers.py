"""Shared fixtures: a throwaway sheet store in a temp directory."""
import os
import shutil
import tempfile
import unittest
from datetime import datetime, timezone

from db.sqlite_db import SheetStore

SHEET = "Sheet1"

HEADERS = [
    "Part Key", "TP-URL", "DC-URL", "Title", "Active",
    "Last Updated", "Server Down", "Image URL", "Last Down Vote",
]

WHEN = datetime(2024, 3, 5, 14, 7, 9, tzinfo=timezone.utc)


def game_row(part_key, title, server_down=0, active=True):
    return [
        part_key,
        "https://www.roblox.com/games/" + title.lower().replace(" ", "-"),
        f"https://discord.gg/{part_key}",
        title,
        active,
        WHEN,
        server_down,
        "",
        "",
    ]


class StoreTestCase(unittest.TestCase):
    """Creates a fresh SQLite-backed sheet store for each test."""

    def setUp(self):
        self.tmp = tempfile.mkdtemp()
        self.store = SheetStore(os.path.join(self.tmp, "app.db")).open()

    def tearDown(self):
        self.store.close()
        shutil.rmtree(self.tmp, ignore_errors=True)

    def make_sheet(self, header=None, rows=(), name=SHEET):
        self.store.create_sheet(name)
        with self.store.write(name) as sheet:
            sheet.clear()
            if header is not None:
                sheet.set_row(0, header)
            for r in rows:
                sheet.append_row(r)

    def values(self, name=SHEET):
        with self.store.read(name) as sheet:
            return sheet.get_values()
