"""
Interactive CLI for the care-coordination dashboards.
Sign in with an access key and view the role-scoped snapshot.
"""

import asyncio
import logging

from carecoord.assembler import SnapshotController, ViewAssembler
from carecoord.config import LOG_LEVEL
from carecoord.database import open_store
from carecoord.report import snapshot_frames, summarize_snapshot
from carecoord.session import load_session_user

MAX_PREVIEW_ROWS = 20


def print_snapshot(snapshot) -> None:
    print("\n[Summary]")
    print(summarize_snapshot(snapshot))
    for name, df in snapshot_frames(snapshot).items():
        print(f"\n[{name}]")
        if df.empty:
            print("(none)")
        else:
            print(df.head(MAX_PREVIEW_ROWS).to_string(index=False))


def main():
    logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    print("=== Care Coordination: role dashboards ===\n")

    store = open_store()

    # ── Login ────────────────────────────────────────────────────────
    try:
        api_key = input("Enter access key (or 'quit'): ").strip()
    except (EOFError, KeyboardInterrupt):
        print("\nExiting.")
        return

    if not api_key or api_key.lower() in {"quit", "exit"}:
        print("Goodbye.")
        return

    try:
        user = asyncio.run(load_session_user(store, api_key))
    except ValueError as e:
        print("\n[ERROR] Login failed.")
        print("Details:", e)
        return

    print(f"\n[auth] Logged in as: {user.display_name} (role={user.role})")
    controller = SnapshotController(ViewAssembler(store), user)

    # ── REPL ─────────────────────────────────────────────────────────
    command = "refresh"
    while True:
        if command in {"quit", "exit"}:
            print("Goodbye.")
            break
        if command == "refresh":
            try:
                snapshot = controller.load_sync()
            except Exception as e:
                print("\n[ERROR] Could not build the dashboard.")
                print("Details:", e)
            else:
                if snapshot is not None:
                    print_snapshot(snapshot)
        elif command:
            print("Commands: refresh, quit")

        try:
            command = input("\nCommand (refresh/quit): ").strip().lower()
        except (EOFError, KeyboardInterrupt):
            print("\nExiting.")
            break


if __name__ == "__main__":
    main()
