#!/usr/bin/env python3
"""
Address Book - Saving and loading object graphs with trellis.store.

Demonstrates:
- Declaring entities with an explicit table and with inferred schemas
- Cascading saves of referenced and embedded entities
- Loading by uuid with shared and cyclic references aliased
- Criteria, ordering and limits
- Grouping saves in one transaction

Usage:
    python examples/address_book.py
"""

from datetime import datetime

from trellis.store import Entity, connect


class Address(Entity):
    _defaults_ = {"street": "", "city": "", "postcode": ""}


class Person(Entity):
    _sql_definition_ = """
        CREATE TABLE {table} (
            uuid UUID PRIMARY KEY NOT NULL,
            name TEXT NOT NULL,
            joined DATETIME,
            home Address,
            snapshot OBJECT,
            FOREIGN KEY(home) REFERENCES addresses(uuid)
        )
    """
    _defaults_ = {"name": "", "joined": datetime, "home": Address, "friends": []}


def main():
    print("=" * 60)
    print("  Trellis Address Book")
    print("=" * 60)
    print()

    db = connect("memory://")
    db.register(Address, Person)

    home = Address(street="17 West Street", city="Wareham", postcode="BH20 4LA")
    ann = Person(name="ann", joined=datetime(2023, 4, 1), home=home)
    bob = Person(name="bob", joined=datetime(2024, 1, 15), home=home)
    cid = Person(name="cid", joined=datetime(2022, 9, 9), home=Address(city="Poole"))

    # Friends point at each other: a cycle
    ann.friends = [bob]
    bob.friends = [ann, cid]

    with db.transaction():
        db.save(ann)    # writes ann, bob, cid and both addresses
        db.save(cid)    # already stored; updated in place

    print(f"People stored:    {db.count(Person)}")
    print(f"Addresses stored: {db.count(Address)}")
    print()

    loaded = db.load_with_uuid(Person, ann.uuid)
    friend = loaded.friends[0]
    print(f"{loaded.name} lives at {loaded.home.street}, {loaded.home.city}")
    print(f"{loaded.name}'s friend: {friend.name}")
    print(f"Cycle preserved:  {friend.friends[0] is loaded}")
    print(f"Home shared:      {friend.home is loaded.home}")
    print()

    print("Newest members first:")
    print("-" * 60)
    for person in db.load(Person, order="joined", descending=True):
        print(f"  {person.name:6s} joined {person.joined:%Y-%m-%d}  ({person.home.city})")
    print()

    print("Living at the shared address:")
    print("-" * 60)
    for person in db.load(Person, {"home": home}, order="name"):
        print(f"  {person.name}")

    db.close()


if __name__ == "__main__":
    main()
