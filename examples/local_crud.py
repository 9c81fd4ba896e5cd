from __future__ import annotations

import logging
from dataclasses import dataclass

from nosqldata_py import NosqlTemplate, nosql_id, nosql_table
from nosqldata_py.testkit import InMemoryStoreClient


@nosql_table(table_name="notes")
@dataclass(frozen=True)
class Note:
    id: int | None = nosql_id(generated=True)
    author: str = ""
    text: str = ""


def main() -> None:
    logging.basicConfig(level=logging.DEBUG)
    template = NosqlTemplate(InMemoryStoreClient(page_size=2))

    template.create_table_if_not_exists(Note)
    saved = template.insert_all(Note(author="ann", text=f"note {i}") for i in range(5))
    print("saved:", [n.id for n in saved])

    first = saved[0]
    template.save(Note(id=first.id, author=first.author, text="edited"))
    print("first:", template.find_by_id(Note, first.id))

    print("count:", template.count(Note))
    print("all:", [n.text for n in template.find_all(Note)])

    template.delete_by_id(Note, first.id)
    print("after delete:", template.count(Note))

    template.drop_table_if_exists(Note)


if __name__ == "__main__":
    main()
