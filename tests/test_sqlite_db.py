import os
import threading
import unittest

from db.init_schema import SAMPLE_HEADERS, main, write_sample_data
from db.sqlite_db import SheetStore, StoreUnavailable

from helpers import SHEET, WHEN, StoreTestCase


class TestSheetStore(StoreTestCase):

    def test_missing_sheet_is_unavailable(self):
        with self.assertRaises(StoreUnavailable):
            with self.store.read("Nope"):
                pass

    def test_empty_sheet(self):
        self.make_sheet()
        self.assertEqual(self.values(), [])

    def test_cell_types_survive(self):
        self.make_sheet(["a", "b", "c", "d", "e", "f"], [["x", 3, 2.5, True, WHEN, ""]])
        self.assertEqual(self.values(), [["a", "b", "c", "d", "e", "f"], ["x", 3, 2.5, True, WHEN, ""]])

    def test_rows_padded_to_data_range(self):
        self.make_sheet(["a", "b"], [["only"], ["x", "y", "z"]])
        self.assertEqual(self.values(), [
            ["a", "b", ""],
            ["only", "", ""],
            ["x", "y", "z"],
        ])

    def test_set_cell_and_append(self):
        self.make_sheet(["a", "b"], [["1", "2"]])
        with self.store.write(SHEET) as sheet:
            sheet.set_cell(1, 1, 7)
            self.assertEqual(sheet.append_row(["3", "4"]), 2)
        self.assertEqual(self.values(), [["a", "b"], ["1", 7], ["3", "4"]])

    def test_failed_write_rolls_back(self):
        self.make_sheet(["a"], [["1"]])
        with self.assertRaises(RuntimeError):
            with self.store.write(SHEET) as sheet:
                sheet.set_cell(1, 0, "changed")
                raise RuntimeError("boom")
        self.assertEqual(self.values(), [["a"], ["1"]])

    def test_observers_see_committed_writes(self):
        self.make_sheet(["a", "b"], [["1", "2"]])
        seen = []
        self.store.add_observer(seen.append)

        with self.store.write(SHEET) as sheet:
            sheet.set_cell(1, 0, "x")
            sheet.append_row(["y", "z"])

        self.assertEqual([(e.sheet_name, e.row_index, e.values) for e in seen], [
            (SHEET, 1, ["x", "2"]),
            (SHEET, 2, ["y", "z"]),
        ])

    def test_observer_can_write_back(self):
        self.make_sheet(["a", "b"], [["1", ""]])
        seen = []

        def stamp(event):
            seen.append(event.row_index)
            if event.values[1] == "":
                with self.store.write(SHEET) as sheet:
                    sheet.set_cell(event.row_index, 1, "seen")

        self.store.add_observer(stamp)

        def run():
            with self.store.write(SHEET) as sheet:
                sheet.set_cell(1, 0, "x")

        t = threading.Thread(target=run)
        t.start()
        t.join(timeout=10)
        self.assertFalse(t.is_alive())
        self.assertEqual(self.values()[1], ["x", "seen"])
        self.assertEqual(seen, [1, 1])

    def test_observer_not_called_on_rollback(self):
        self.make_sheet(["a"], [["1"]])
        seen = []
        self.store.add_observer(seen.append)
        with self.assertRaises(RuntimeError):
            with self.store.write(SHEET) as sheet:
                sheet.set_cell(1, 0, "x")
                raise RuntimeError("boom")
        self.assertEqual(seen, [])

    def test_closed_store_is_unavailable(self):
        self.make_sheet(["a"])
        self.store.close()
        with self.assertRaises(StoreUnavailable):
            self.values()

    def test_sheet_names(self):
        self.store.create_sheet("Sheet1")
        self.store.create_sheet("Other")
        self.store.create_sheet("Sheet1")
        self.assertEqual(self.store.sheet_names(), ["Sheet1", "Other"])


class TestInitSchema(StoreTestCase):

    def test_sample_data(self):
        n = write_sample_data(self.store, SHEET)
        values = self.values()
        self.assertEqual(n, 5)
        self.assertEqual(values[0], SAMPLE_HEADERS)
        self.assertEqual([r[0] for r in values[1:]], ["trlx_tp", "trlx_tp", "hub_tp", "hub_tp", "test_tp"])

    def test_cli_creates_sheet(self):
        db = os.path.join(self.tmp, "cli.db")
        main(["--db", db, "--sheet", "Teleports", "--sample"])
        store = SheetStore(db).open()
        try:
            self.assertEqual(store.sheet_names(), ["Teleports"])
            with store.read("Teleports") as sheet:
                self.assertEqual(len(sheet.get_values()), 6)
        finally:
            store.close()


class TestOpen(unittest.TestCase):

    def test_unopenable_path(self):
        with self.assertRaises(StoreUnavailable):
            SheetStore("/dev/null/app.db").open()
