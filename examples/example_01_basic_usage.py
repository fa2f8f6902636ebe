"""Example 01: Basic Usage - chronoconf Fundamentals.

This example demonstrates the fundamental operations:
- Loading a YAML schema of static and dynamic settings
- Reading settings with get() and get_many()
- Atomically writing dynamic settings with set()
- Rejection of writes to static settings
- Walking a setting's history with get_history()
"""

from pathlib import Path

from chronoconf import AppConfig, InvalidKeyError

SCHEMA = Path(__file__).with_name("settings.yaml")


def main():
    """Run the basic usage example."""
    print("=" * 80)
    print("CHRONOCONF BASIC USAGE EXAMPLE")
    print("=" * 80)

    # Step 1: Open a client
    # memory:// keeps everything in-process; use sqlite:///path or s3://bucket/prefix
    # to share settings between processes.
    with AppConfig.open(SCHEMA, "memory://") as settings:
        print("\n[1] Defaults")
        print(f"  system.email  = {settings.get('system.email')!r}")
        print(f"  system.admins = {settings.get('system.admins')!r}")

        # Step 2: Write dynamic settings in one atomic batch
        print("\n[2] Atomic write")
        revision = settings.set({"system.email": "admin@example.com", "limits.max_users": 50})
        print(f"  wrote at revision {revision}")
        print(f"  values: {settings.get_many(['system.email', 'limits.max_users'])}")

        # Step 3: Static settings are read-only at runtime
        print("\n[3] Static settings")
        try:
            settings.set({"system.admins": ["root"]})
        except InvalidKeyError as e:
            print(f"  rejected: {e}")

        # Step 4: History
        print("\n[4] History of system.email")
        settings.set({"system.email": "ops@example.com"})
        for offset in range(3):
            print(f"  offset {offset}: {settings.get_history('system.email', offset)!r}")

    print("\n" + "=" * 80)


if __name__ == "__main__":
    main()
