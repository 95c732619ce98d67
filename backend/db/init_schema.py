# backend/db/init_schema.py
import argparse
import os
from datetime import datetime, timezone

from .sqlite_db import SheetStore

SAMPLE_HEADERS = [
    "Part Key", "TP-URL", "DC-URL", "Title", "Active",
    "Last Updated", "Server Down", "Image URL", "Description",
]


def sample_rows(now: datetime):
    return [
        ["trlx_tp", "https://www.roblox.com/games/123456789", "https://discord.gg/trlx", "TRLX Games - PvP", True, now, 3,
         "https://example.com/trlx-pvp.png",
         "Experience intense PvP combat in the TRLX gaming universe with competitive matches and leaderboards."],
        ["trlx_tp", "https://www.roblox.com/games/123456790", "https://discord.gg/trlx", "TRLX Games - Roleplay", True, now, 0,
         "https://example.com/trlx-rp.png",
         "Immerse yourself in roleplay scenarios with custom characters and storylines in the TRLX universe."],
        ["hub_tp", "https://www.roblox.com/games/987654321", "https://discord.gg/hub", "Gaming Hub - Main", True, now, 0,
         "https://example.com/hub.png",
         "The central hub for all gaming activities. Meet other players and discover new games together."],
        ["hub_tp", "https://www.roblox.com/games/987654322", "https://discord.gg/hub", "Gaming Hub - VIP", True, now, 1,
         "https://example.com/hub-vip.png",
         "Exclusive VIP area with premium features and enhanced gameplay experience for members."],
        ["test_tp", "https://www.roblox.com/games/555666777", "https://discord.gg/test", "Test Server", False, now, 1,
         "",
         "This is a test server for development and debugging purposes. Join to help test new features!"],
    ]


def write_sample_data(store: SheetStore, sheet_name: str) -> int:
    """Replace the sheet contents with the sample header and rows. Returns the data row count."""
    rows = sample_rows(datetime.now(timezone.utc).replace(microsecond=0))
    store.create_sheet(sheet_name)
    with store.write(sheet_name) as sheet:
        sheet.clear()
        sheet.set_row(0, SAMPLE_HEADERS)
        for r in rows:
            sheet.append_row(r)
    return len(rows)


def main(argv=None) -> None:
    p = argparse.ArgumentParser(description="Create the sheet store (and optionally sample data).")
    p.add_argument("--db", default=os.environ.get("DB_PATH", "/data/app.db"))
    p.add_argument("--sheet", default=os.environ.get("SHEET_NAME", "Sheet1"))
    p.add_argument("--sample", action="store_true", help="clear the sheet and write sample rows")
    args = p.parse_args(argv)

    store = SheetStore(args.db).open()
    try:
        store.create_sheet(args.sheet)
        print(f"OK: sheet store is ready db={args.db} sheet={args.sheet}")
        if args.sample:
            n = write_sample_data(store, args.sheet)
            print(f"OK: wrote {n} sample rows")
    finally:
        store.close()


if __name__ == "__main__":
    main()
