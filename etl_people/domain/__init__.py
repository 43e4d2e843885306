"""etl_people.domain -- Record types flowing through the people ETL."""

from etl_people.domain.records import AgeCount, Person

__all__ = ["AgeCount", "Person"]
