"""Reset a delivery partner's mirror in Redis (useful for testing)."""

import argparse
import asyncio

from delivery_engine.state.manager import MirrorKey, MirrorStore, actor_namespace


async def reset_partner_state(actor_id: str, assume_yes: bool) -> None:
    """Delete every mirror key of one partner."""
    print(f"\n⚠️  WARNING: This will delete all delivery data for {actor_id}!")
    if not assume_yes:
        response = input("Are you sure? (yes/no): ")
        if response.lower() != "yes":
            print("Cancelled.")
            return

    print("\nResetting state...")

    store = MirrorStore(namespace=actor_namespace(actor_id))
    await store.connect()
    deleted = await store.delete(*MirrorKey)
    await store.disconnect()

    if deleted:
        print(f"✓ Delivery data cleared for {actor_id}\n")
    else:
        print("❌ Could not reach Redis; nothing was deleted\n")


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("actor_id", help="Delivery partner id")
    parser.add_argument("-y", "--yes", action="store_true", help="Skip confirmation")
    args = parser.parse_args()

    asyncio.run(reset_partner_state(args.actor_id, args.yes))


if __name__ == "__main__":
    main()
