"""Example 02: Local Caching, Snapshots and Change Notifications.

This example demonstrates several clients sharing one chronicle:
- A caching reader on SQLite that only sees new values after update_cache()
- The whole-namespace snapshot (data_set / check_for_update)
- Subscribing to writes made by another client on a shared memory chronicle
- SQLite connections cannot notify each other, so subscribing there raises
"""

import tempfile
from pathlib import Path

from chronoconf import AppConfig, ChronoconfConfig, MemoryChronicle, NotificationUnsupportedError

SCHEMA = Path(__file__).with_name("settings.yaml")


def main():
    """Run the caching and notification example."""
    print("=" * 80)
    print("CHRONOCONF CACHING AND NOTIFICATIONS EXAMPLE")
    print("=" * 80)

    with tempfile.TemporaryDirectory() as tmp:
        uri = f"sqlite:///{Path(tmp) / 'settings.db'}"
        writer = AppConfig.open(SCHEMA, uri)
        reader = AppConfig.open(
            SCHEMA, uri, config=ChronoconfConfig(local_caching=True, refresh_interval=30)
        )

        # Step 1: The cached reader keeps its view until it refreshes
        print("\n[1] Cached reads")
        writer.set({"limits.max_users": 25})
        print(f"  before refresh: {reader.get('limits.max_users')}")
        reader.update_cache(force=True)
        print(f"  after refresh:  {reader.get('limits.max_users')}")

        # Step 2: Snapshot of every dynamic value
        print("\n[2] Snapshot")
        print(f"  revision {reader.data_set.revision}: {reader.data_set.nested()}")
        writer.set({"system.email": "ops@example.com"})
        print(f"  check_for_update(force=True) -> {reader.check_for_update(force=True)}")
        print(f"  system.email in snapshot: {reader.data_set.get('system.email')!r}")

        # Step 3: SQLite has no publish channel between connections
        print("\n[3] Notifications on SQLite")
        try:
            reader.subscribe("limits.max_users", print)
        except NotificationUnsupportedError as e:
            print(f"  {e}")

        writer.close()
        reader.close()

    # Step 4: Clients sharing one memory chronicle see each other's writes
    print("\n[4] Notifications on a shared memory chronicle")
    shared = MemoryChronicle()
    listener = AppConfig(SCHEMA, shared)
    publisher = AppConfig(SCHEMA, shared)
    listener.subscribe(
        "limits.max_users",
        lambda record: print(f"  [notify] {record.path} -> {record.value} @ {record.revision}"),
    )
    publisher.set({"limits.max_users": 40})
    listener.close()

    print("\n" + "=" * 80)


if __name__ == "__main__":
    main()
